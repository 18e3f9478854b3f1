# echoid/consent/templates.py
"""
EchoID Consent: Agreement Templates

Each template carries the agreement text shown before capture and the
phrase the user must speak in the voice recording.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

from ..errors import ValidationError
from ..ledger.codec import UnlockMode


FEE_DISCLOSURE = (
    "PROTOCOL FEE: By proceeding, you agree to pay a protocol fee to the EchoID "
    "treasury. This fee covers on-chain transaction costs and protocol maintenance. "
    "The fee amount will be displayed before final confirmation."
)

_SEX_NDA_TEXT = """SEXUAL ACTIVITY NON-DISCLOSURE AGREEMENT

This agreement is entered into voluntarily by both parties for the purpose of establishing confidentiality regarding sexual activities.

1. CONFIDENTIALITY: Both parties agree to maintain complete confidentiality regarding all sexual activities, communications, and interactions that occur between them.

2. PROHIBITED DISCLOSURE: Neither party shall disclose, describe, or discuss the sexual activities or any related information to any third party, including but not limited to friends, family, social media, or any other public or private forum.

3. CONSENT VERIFICATION: This agreement is recorded on-chain via cryptographic verification including voice, biometric, and geolocation hashes to ensure authenticity and prevent coercion.

4. DURATION: This agreement remains in effect indefinitely unless both parties mutually consent to unlock the verification data through the EchoID protocol.

5. LEGAL BINDING: This agreement is legally binding and enforceable. Violation may result in legal consequences."""

_NDA_TEXT = """STANDARD NON-DISCLOSURE AGREEMENT

This agreement establishes confidentiality between parties regarding shared information, communications, and interactions.

1. CONFIDENTIAL INFORMATION: All communications, documents, and shared information are considered confidential.

2. NON-DISCLOSURE: Parties agree not to disclose confidential information to third parties without mutual consent.

3. VERIFICATION: This agreement is cryptographically verified on-chain to ensure authenticity.

4. TERM: This agreement remains in effect until both parties agree to modify or terminate through the EchoID protocol."""

_CREATIVE_TEXT = """CREATIVE COLLABORATION AGREEMENT

This agreement governs the collaborative creation of creative works and establishes ownership and confidentiality terms.

1. COLLABORATIVE WORK: Parties agree to collaborate on creative projects as specified.

2. OWNERSHIP: Ownership and rights to collaborative works shall be determined by mutual agreement.

3. CONFIDENTIALITY: All shared creative materials and discussions remain confidential unless otherwise agreed.

4. VERIFICATION: This agreement is cryptographically verified on-chain."""

_COLLAB_TEXT = """BUSINESS COLLABORATION AGREEMENT

This agreement establishes terms for business collaboration and partnership.

1. SCOPE: Parties agree to collaborate on specified business activities.

2. CONFIDENTIALITY: All business discussions and materials remain confidential.

3. TERMS: Specific collaboration terms shall be agreed upon separately.

4. VERIFICATION: This agreement is cryptographically verified on-chain."""

_CONVERSATION_TEXT = """CONVERSATION CONFIDENTIALITY AGREEMENT

This agreement establishes confidentiality for private conversations and communications.

1. PRIVATE CONVERSATIONS: All conversations and communications are considered private and confidential.

2. NON-DISCLOSURE: Parties agree not to disclose conversation content to third parties.

3. VERIFICATION: This agreement is cryptographically verified on-chain to ensure authenticity.

4. TERM: Confidentiality remains in effect until both parties agree to modify through the EchoID protocol."""


@dataclass(frozen=True)
class Template:
    id: str
    title: str
    text: str
    required_phrase: str
    fee_disclosure: str = FEE_DISCLOSURE
    default_unlock_mode: UnlockMode = UnlockMode.WINDOWED


TEMPLATES: Dict[str, Template] = {
    t.id: t
    for t in (
        Template(
            id="sex-nda",
            title="Sex NDA",
            text=_SEX_NDA_TEXT,
            required_phrase="I consent willingly and voluntarily to this agreement without coercion or pressure",
        ),
        Template(
            id="nda",
            title="Standard NDA",
            text=_NDA_TEXT,
            required_phrase="I agree to this non-disclosure agreement willingly and without coercion",
        ),
        Template(
            id="creative",
            title="Creative Collaboration",
            text=_CREATIVE_TEXT,
            required_phrase="I agree to this creative collaboration agreement voluntarily and freely",
        ),
        Template(
            id="collab",
            title="Business Collaboration",
            text=_COLLAB_TEXT,
            required_phrase="I consent to this business collaboration agreement of my own free will",
        ),
        Template(
            id="conversation",
            title="Conversation Confidentiality",
            text=_CONVERSATION_TEXT,
            required_phrase="I agree to maintain confidentiality of our conversations willingly and without pressure",
        ),
    )
}


def get_template(template_id: str) -> Template:
    """
    Raises:
        ValidationError: Unknown template id
    """
    try:
        return TEMPLATES[template_id]
    except KeyError:
        raise ValidationError(f"Unknown template: {template_id!r}", field="template") from None


def all_templates() -> List[Template]:
    return list(TEMPLATES.values())
