from flask import Blueprint, g, jsonify, request

from .extensions import services
from .gating import require_mfa
from .identity import require_user
from .schemas import RecommendationRequest, TutorRequest, parse

tutor_bp = Blueprint("tutor", __name__)

CHAT_PROMPT = (
    "You are an expert personal finance tutor. The user's current knowledge level is {level}. "
    "Keep responses clear, educational, and actionable."
)
QUIZ_PROMPT = (
    "Generate a personal finance quiz with 5 multiple-choice questions for the {level} level. "
    'Return JSON: {{"questions": [{{"question": str, "options": [str], "correctIndex": int, '
    '"explanation": str}}]}}'
)
RECOMMENDATION_PROMPT = (
    "You are a personal finance advisor. Suggest a diversified allocation for a {risk} investor "
    "with {amount:.2f} to invest, at a {level} knowledge level."
)


def _knowledge_level(user_id):
    profile = services().db.get_profile(user_id)
    return (profile or {}).get("knowledge_level") or "beginner"


@tutor_bp.post("/tutor")
@require_user
@require_mfa
def tutor():
    body = parse(TutorRequest, request.get_json(silent=True))
    level = _knowledge_level(g.user["id"])
    prompt = (CHAT_PROMPT if body.type == "chat" else QUIZ_PROMPT).format(level=level)
    reply = services().completion.complete(prompt, [m.model_dump() for m in body.messages])
    return jsonify(type=body.type, content=reply)


@tutor_bp.post("/investments/recommendations")
@require_user
@require_mfa
def recommendations():
    body = parse(RecommendationRequest, request.get_json(silent=True) or {})
    prompt = RECOMMENDATION_PROMPT.format(
        risk=body.riskProfile, amount=body.investmentAmount, level=_knowledge_level(g.user["id"])
    )
    reply = services().completion.complete(
        prompt, [{"role": "user", "content": "What should I invest in?"}]
    )
    return jsonify(recommendations=reply)
