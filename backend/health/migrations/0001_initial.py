from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Analysis',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('type', models.CharField(choices=[('report', 'Medical report'), ('face', 'Face scan'), ('risk', 'Health check')], max_length=10)),
                ('raw_data', models.JSONField(default=dict)),
                ('structured_data', models.JSONField(blank=True, null=True)),
                ('visual_metrics', models.JSONField(blank=True, null=True)),
                ('risk_assessment', models.TextField(blank=True)),
                ('problems_detected', models.JSONField(blank=True, null=True)),
                ('treatments', models.JSONField(blank=True, null=True)),
                ('is_fallback', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='analyses', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name_plural': 'analyses',
                'ordering': ['-created_at', '-id'],
                'indexes': [models.Index(fields=['user', 'type', 'created_at'], name='analysis_user_type_created')],
            },
        ),
    ]
