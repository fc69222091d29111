from django.contrib import messages
from django.contrib.auth.decorators import login_required
from django.http import Http404
from django.shortcuts import redirect, render

from core.models import UserProfile
from .analyzers import AIProviderError
from .forms import ChatForm, FaceScanForm, HealthCheckForm, ReportScanForm
from .models import Analysis
from .ocr import extract_text_from_image
from .services import (
    analyze_face_upload,
    analyze_report_text,
    answer_chat,
    assess_risk,
    get_user_analysis,
    paginate_analyses,
)
from .validators import UnprocessableUpload, ensure_report_processable

CHAT_SESSION_KEY = "chat_history"
CHAT_SESSION_TURNS = 20


def _ai_error(request, template, context, exc: AIProviderError):
    messages.error(request, exc.user_message)
    return render(request, template, context, status=exc.kind.http_status)


def _fallback_notice(request, outcome):
    if outcome.fallback:
        messages.warning(request, outcome.warning)


@login_required
def scan_report_view(request):
    template = "health/scan_report.html"
    form = ReportScanForm(request.POST or None, request.FILES or None)
    if request.method != "POST" or not form.is_valid():
        return render(request, template, {"form": form}, status=400 if form.is_bound else 200)

    upload = form.cleaned_data.get("file")
    try:
        if upload:
            ensure_report_processable(upload)
            raw_text = extract_text_from_image(upload)
            source = "upload"
        else:
            raw_text = form.cleaned_data["report_text"]
            source = "text"
        analysis, outcome = analyze_report_text(request.user, raw_text, source=source)
    except UnprocessableUpload as exc:
        form.add_error("file" if upload else None, str(exc))
        return render(request, template, {"form": form}, status=422)
    except AIProviderError as exc:
        return _ai_error(request, template, {"form": form}, exc)

    _fallback_notice(request, outcome)
    messages.success(request, "Report analyzed.")
    return redirect("analysis-detail", analysis_id=analysis.pk)


@login_required
def scan_face_view(request):
    template = "health/scan_face.html"
    form = FaceScanForm(request.POST or None, request.FILES or None)
    if request.method != "POST" or not form.is_valid():
        return render(request, template, {"form": form}, status=400 if form.is_bound else 200)

    try:
        analysis, result, outcome = analyze_face_upload(request.user, form.cleaned_data["file"])
    except UnprocessableUpload as exc:
        form.add_error("file", str(exc))
        return render(request, template, {"form": form}, status=422)
    except AIProviderError as exc:
        return _ai_error(request, template, {"form": form}, exc)

    _fallback_notice(request, outcome)
    return render(
        request,
        template,
        {"form": FaceScanForm(), "analysis": analysis, "result": result},
    )


@login_required
def health_check_view(request):
    template = "health/health_check.html"
    form = HealthCheckForm(request.user, request.POST or None)
    if request.method != "POST" or not form.is_valid():
        return render(request, template, {"form": form}, status=400 if form.is_bound else 200)

    profile, _ = UserProfile.objects.get_or_create(user=request.user)
    user_data = profile.as_user_data()
    symptoms = form.symptom_list()
    if symptoms:
        user_data["symptoms"] = symptoms

    report = form.cleaned_data.get("report_analysis")
    face = form.cleaned_data.get("face_analysis")
    try:
        analysis, outcome = assess_risk(
            request.user,
            report.structured_data if report else None,
            face.visual_metrics if face else None,
            user_data,
        )
    except AIProviderError as exc:
        return _ai_error(request, template, {"form": form}, exc)

    _fallback_notice(request, outcome)
    messages.success(request, "Health check generated.")
    return redirect("analysis-detail", analysis_id=analysis.pk)


@login_required
def history_view(request):
    analysis_type = request.GET.get("type") or None
    if analysis_type not in dict(Analysis.TYPE_CHOICES):
        analysis_type = None

    try:
        page = paginate_analyses(request.user, request.GET.get("page") or 1, analysis_type=analysis_type)
    except ValueError:
        page = paginate_analyses(request.user, 1, analysis_type=analysis_type)

    return render(
        request,
        "health/history.html",
        {
            "page": page,
            "analyses": page["analyses"],
            "type_choices": Analysis.TYPE_CHOICES,
            "selected_type": analysis_type or "",
            "has_previous": page["page"] > 1,
            "has_next": page["page"] < page["totalPages"],
        },
    )


@login_required
def analysis_detail_view(request, analysis_id: int):
    analysis = get_user_analysis(request.user, analysis_id)
    if not analysis:
        raise Http404("Analysis not found.")
    return render(request, "health/analysis_detail.html", {"analysis": analysis})


@login_required
def chatbot_view(request):
    template = "health/chatbot.html"
    history = request.session.get(CHAT_SESSION_KEY, [])

    if request.method == "POST" and "reset" in request.POST:
        request.session[CHAT_SESSION_KEY] = []
        return redirect("chatbot")

    form = ChatForm(request.POST or None)
    if request.method != "POST" or not form.is_valid():
        return render(
            request, template, {"form": form, "history": history}, status=400 if form.is_bound else 200
        )

    message = form.cleaned_data["message"]
    try:
        outcome = answer_chat(request.user, message, history=history)
    except AIProviderError as exc:
        return _ai_error(request, template, {"form": form, "history": history}, exc)

    history = history + [
        {"role": "user", "content": message},
        {"role": "assistant", "content": outcome.value},
    ]
    request.session[CHAT_SESSION_KEY] = history[-CHAT_SESSION_TURNS:]
    _fallback_notice(request, outcome)
    return redirect("chatbot")
