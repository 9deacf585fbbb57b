from .llm import ProviderCandidate, ProviderChainEngine, provider_candidates
from .sarvam import SarvamLanguageBridge, split_for_translation
from .whatsapp import WhatsAppGateway

__all__ = [
    "ProviderCandidate",
    "ProviderChainEngine",
    "SarvamLanguageBridge",
    "WhatsAppGateway",
    "provider_candidates",
    "split_for_translation",
]
