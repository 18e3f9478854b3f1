# echoid/consent/__init__.py
"""
EchoID Consent Layer

    models:    Consent, ConsentData, ConsentRequest, parse_consent_request
    templates: agreement templates and required phrases
    coercion:  voice-timing coercion heuristic
    state:     unlock state machine
    guard:     single-flight guard
    service:   ConsentService
"""

from .coercion import AudioAnalysis, CoercionLevel, analyze_coercion, coercion_color, coercion_label
from .templates import Template, all_templates, get_template
from .models import (
    Consent,
    ConsentData,
    consent_data_type,
    ConsentRequest,
    ConsentStatus,
    DEFAULT_UNLOCK_WINDOW,
    now_ms,
    parse_consent_request,
)
from .state import ConsentState, UnlockStateMachine, current_state, is_locked, time_remaining
from .guard import SingleFlight
from .service import ConsentService

__all__ = [
    "AudioAnalysis",
    "CoercionLevel",
    "analyze_coercion",
    "coercion_color",
    "coercion_label",
    "Template",
    "all_templates",
    "get_template",
    "Consent",
    "ConsentData",
    "consent_data_type",
    "ConsentRequest",
    "ConsentStatus",
    "DEFAULT_UNLOCK_WINDOW",
    "now_ms",
    "parse_consent_request",
    "ConsentState",
    "UnlockStateMachine",
    "current_state",
    "is_locked",
    "time_remaining",
    "SingleFlight",
    "ConsentService",
]
