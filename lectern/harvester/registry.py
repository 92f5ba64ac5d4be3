# lectern/harvester/registry.py

"""
Provider registry and the dispatch helpers hosts call.

Providers are probed in registration order and the first whose
``can_handle`` accepts the page URL owns it. The default registry holds
Panopto, Echo360 and HTML5 in that order.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, runtime_checkable

from lectern.harvester.echo360 import Echo360Provider
from lectern.harvester.html5 import Html5Provider
from lectern.harvester.panopto import PanoptoProvider
from lectern.shared.errors import ErrorCode, failure_from_exception
from lectern.shared.models import (
    DetectedVideo,
    DetectionContext,
    TranscriptExtractionResult,
    VideoProvider,
)


@runtime_checkable
class TranscriptProvider(Protocol):
    """What a provider must offer.

    ``detect_videos_async``, ``extract_transcript`` and
    ``get_empty_detection_hint`` are optional and looked up with ``getattr``.
    """

    provider: VideoProvider

    def can_handle(self, url: str) -> bool:
        ...

    def detect_videos_sync(self, context: DetectionContext) -> List[DetectedVideo]:
        ...

    def requires_async_detection(self, context: DetectionContext) -> bool:
        ...


@dataclass
class RegistryDetection:
    videos: List[DetectedVideo] = field(default_factory=list)
    provider: Optional[TranscriptProvider] = None
    requires_async: bool = False


class ProviderRegistry:
    def __init__(self, providers: Optional[List[TranscriptProvider]] = None):
        self._providers: List[TranscriptProvider] = []
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: TranscriptProvider) -> None:
        """Add a provider; a second provider with the same id is ignored."""
        if any(existing.provider == provider.provider for existing in self._providers):
            logging.debug(f"   Provider {provider.provider.value} already registered, skipping")
            return
        self._providers.append(provider)

    def get_all(self) -> List[TranscriptProvider]:
        return list(self._providers)

    def get_provider(self, provider_id: VideoProvider) -> Optional[TranscriptProvider]:
        for provider in self._providers:
            if provider.provider == provider_id:
                return provider
        return None

    def get_provider_for_url(self, url: str) -> Optional[TranscriptProvider]:
        for provider in self._providers:
            if provider.can_handle(url):
                return provider
        return None

    def detect_videos_sync(self, context: DetectionContext) -> RegistryDetection:
        provider = self.get_provider_for_url(context.page_url)
        if provider is None:
            return RegistryDetection()
        if provider.requires_async_detection(context):
            return RegistryDetection(provider=provider, requires_async=True)
        return RegistryDetection(videos=provider.detect_videos_sync(context), provider=provider)

    def clear(self) -> None:
        self._providers = []


def create_default_registry(**retry_options: Any) -> ProviderRegistry:
    return ProviderRegistry([PanoptoProvider(), Echo360Provider(**retry_options), Html5Provider()])


_REGISTRY: Optional[ProviderRegistry] = None


def get_provider_registry() -> ProviderRegistry:
    global _REGISTRY
    if _REGISTRY is None:
        _REGISTRY = create_default_registry()
    return _REGISTRY


async def detect_videos_async(
    context: DetectionContext, fetcher: Any, registry: Optional[ProviderRegistry] = None
) -> List[DetectedVideo]:
    """Run the URL owner's network-backed detection; [] when it has none or it fails."""
    registry = registry or get_provider_registry()
    provider = registry.get_provider_for_url(context.page_url)
    detect = getattr(provider, "detect_videos_async", None)
    if detect is None:
        return []
    try:
        return await detect(context, fetcher)
    except Exception as e:
        logging.error(f"   Async detection failed for {context.page_url}: {e}")
        return []


async def extract_transcript(
    video: DetectedVideo, fetcher: Any, registry: Optional[ProviderRegistry] = None
) -> TranscriptExtractionResult:
    registry = registry or get_provider_registry()
    provider = registry.get_provider(video.provider)
    extract = getattr(provider, "extract_transcript", None)
    if extract is None:
        return TranscriptExtractionResult.failure(
            f"Transcript extraction is not supported for {video.provider.value} videos",
            ErrorCode.NOT_AVAILABLE,
            False,
        )
    try:
        return await extract(video, fetcher)
    except Exception as e:
        logging.error(f"   {video.provider.value} transcript extraction raised: {e}")
        return failure_from_exception(e, video.provider.value)
