"""English copy for postpartum care routes.

Action plans pick their title, summary, contacts and instructions from
here. ``{{emergency_number}}`` is replaced with the number configured in
the active ruleset.
"""

from postpartum_triage.schemas.triage import PrimaryRoute

COMMON_SAFETY_NET = [
    "Call {{emergency_number}} immediately if suicidal thoughts with intent, "
    "thoughts of harming the baby, psychosis signs, heavy bleeding, collapse, "
    "or severe breathing/chest symptoms occur.",
    "Do not wait for a scheduled appointment if symptoms rapidly worsen.",
]

ROUTE_COPY = {
    # =========================================================================
    # Emergency
    # =========================================================================
    PrimaryRoute.CALL_EMERGENCY: {
        "title": "Emergency care needed now",
        "summary": (
            "Your answers indicate a high-risk postpartum emergency. "
            "Call {{emergency_number}} now."
        ),
        "recommended_contacts": [
            "{{emergency_number}}",
            "nearest emergency department",
        ],
        "instructions": [
            "Call {{emergency_number}} now.",
            "Stay with a trusted adult if possible until emergency care is reached.",
            "If safe, bring medication list and postpartum timeline.",
        ],
    },
    # =========================================================================
    # Same day
    # =========================================================================
    PrimaryRoute.SAME_DAY_MENTAL_HEALTH: {
        "title": "Same-day mental health assessment",
        "summary": (
            "Your answers suggest urgent postpartum mental health risk that "
            "needs same-day clinical assessment."
        ),
        "recommended_contacts": [
            "same-day psychiatric assessment service",
            "Hausarzt (same day)",
            "midwife/Hebamme for immediate escalation support",
        ],
        "instructions": [
            "Arrange a same-day mental health assessment.",
            "If same-day psychiatry is unavailable, seek same-day Hausarzt/OB-GYN review.",
            "Do not remain alone if safety feels uncertain.",
        ],
    },
    PrimaryRoute.SAME_DAY_OBGYN: {
        "title": "Same-day postpartum physical assessment",
        "summary": (
            "Your answers suggest urgent postpartum recovery or pelvic-floor "
            "symptoms requiring same-day review."
        ),
        "recommended_contacts": [
            "OB-GYN (same day)",
            "Hausarzt (same day)",
            "postpartum hospital clinic/ambulatory gyn service",
        ],
        "instructions": [
            "Arrange same-day OB-GYN or Hausarzt assessment.",
            "Bring details of delivery type, tear history, and symptom timeline.",
            "Request pelvic floor and wound-focused evaluation if relevant.",
        ],
    },
    PrimaryRoute.SAME_DAY_MIXED: {
        "title": "Same-day combined postpartum assessment",
        "summary": (
            "Your answers suggest urgent concerns across both mental and "
            "physical postpartum recovery."
        ),
        "recommended_contacts": [
            "same-day Hausarzt or OB-GYN",
            "same-day mental health assessment service",
            "midwife/Hebamme for routing support",
        ],
        "instructions": [
            "Arrange same-day assessment covering both mental health and physical postpartum recovery.",
            "Prioritize whichever appointment is available first today.",
            "If safety risk increases, escalate to emergency immediately.",
        ],
    },
    # =========================================================================
    # Routine
    # =========================================================================
    PrimaryRoute.ROUTINE_FOLLOWUP: {
        "title": "Routine postpartum follow-up",
        "summary": (
            "Current responses do not indicate emergency-level risk, but "
            "follow-up is still recommended."
        ),
        "recommended_contacts": [
            "scheduled OB-GYN follow-up",
            "Hausarzt follow-up",
            "midwife/Hebamme check-in if available",
        ],
        "instructions": [
            "Book a routine follow-up within 7 days.",
            "Track symptom frequency and functional impact daily.",
            "Re-run triage immediately if symptoms worsen or new red flags appear.",
        ],
    },
}


def _render(text: str, emergency_number: str) -> str:
    return text.replace("{{emergency_number}}", emergency_number)


def render_route_copy(route: PrimaryRoute, emergency_number: str) -> dict:
    """Copy for one route with the emergency number filled in.

    Args:
        route: Care route
        emergency_number: Number to call in an emergency

    Returns:
        Dict with title, summary, recommended_contacts, instructions, safety_net
    """
    copy = ROUTE_COPY[route]
    return {
        "title": _render(copy["title"], emergency_number),
        "summary": _render(copy["summary"], emergency_number),
        "recommended_contacts": [
            _render(line, emergency_number) for line in copy["recommended_contacts"]
        ],
        "instructions": [
            _render(line, emergency_number) for line in copy["instructions"]
        ],
        "safety_net": [_render(line, emergency_number) for line in COMMON_SAFETY_NET],
    }
