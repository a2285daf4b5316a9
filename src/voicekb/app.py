"""Builds a ConversationService from a loaded config dict."""

import os
from typing import Any, Dict, Optional

from .pipeline.config import llm_api_key, log
from .pipeline.dedup import DedupGuard
from .pipeline.governor import RequestGovernor
from .pipeline.llm import build_llm
from .pipeline.resolver import AnswerResolver, ResolverSettings
from .pipeline.scorer import MatchScorer, ScoreWeights
from .pipeline.service import ConversationService, ServiceSettings
from .pipeline.session import SessionModeStore
from .pipeline.store import InMemoryKnowledgeStore, KnowledgeStore
from .pipeline.tables import ResolutionTables
from .realtime.asr import WhisperASR
from .realtime.documents import DocumentExtractor
from .realtime.tts import EdgeTTS


def build_governor(cfg: Dict[str, Any]) -> RequestGovernor:
    return RequestGovernor(
        max_concurrent=int(cfg.get("max_concurrent", 4)),
        max_queue=cfg.get("max_queue", 64),
        default_timeout=float(cfg.get("default_timeout_sec", 30.0)),
        shutdown_timeout=float(cfg.get("shutdown_timeout_sec", 10.0)),
    )


def build_store(cfg: Dict[str, Any]) -> KnowledgeStore:
    path = cfg.get("path")
    if not path:
        return InMemoryKnowledgeStore()
    return InMemoryKnowledgeStore.from_file(path)


def build_service(config: Dict[str, Any], store: Optional[KnowledgeStore] = None) -> ConversationService:
    governor = build_governor(config.get("governor", {}))
    store = store or build_store(config.get("store", {}))
    resolver_cfg = config.get("resolver", {})
    resolver = AnswerResolver(
        store=store,
        governor=governor,
        llm=build_llm(config.get("llm", {}), api_key=llm_api_key()),
        scorer=MatchScorer(
            ScoreWeights.from_config(resolver_cfg.get("weights")),
            threshold=float(resolver_cfg.get("threshold", 0.3)),
        ),
        tables=ResolutionTables.from_config(config.get("tables")),
        settings=ResolverSettings.from_config(resolver_cfg),
    )
    asr_cfg = config.get("asr", {})
    tts_cfg = config.get("tts", {})
    service = ConversationService(
        resolver=resolver,
        governor=governor,
        sessions=SessionModeStore(context_ttl_sec=float(config.get("session", {}).get("context_ttl_sec", 1800))),
        dedup=DedupGuard(int(config.get("dedup", {}).get("capacity", 1000))),
        asr=WhisperASR.from_config(asr_cfg) if asr_cfg.get("enabled", True) else None,
        tts=EdgeTTS.from_config(tts_cfg) if tts_cfg.get("enabled", True) else None,
        extractor=DocumentExtractor(),
        settings=ServiceSettings.from_config(config),
    )
    log.info(
        "service ready: store=%s llm=%s slots=%d",
        store.name,
        resolver.llm.name if resolver.llm else "disabled",
        governor.max_concurrent,
    )
    return service


async def stop_service(service: ConversationService, timeout: Optional[float] = None) -> None:
    """Drain the governor; exit the process if operations outlive the deadline."""
    if not await service.governor.shutdown(timeout):
        log.error("forcing exit: operations still running after drain deadline")
        os._exit(1)
