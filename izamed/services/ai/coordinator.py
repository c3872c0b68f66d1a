# izamed/services/ai/coordinator.py
"""
Cadena de fallback para el AI assistant.

Prueba los backends en orden de prioridad, valida la calidad de la
respuesta y, si todos fallan, devuelve una respuesta estática segura.
Nunca levanta excepción hacia el caller.
"""
import asyncio
import logging
import time
from collections import Counter, defaultdict
from datetime import datetime, timezone
from typing import Callable, Sequence

from izamed.schemas.ai import AiBackendResult, DiagnosisResult
from izamed.services.ai.base import AiBackend, AiRequest, RawResponse, RequestKind
from izamed.services.ai.heuristics import MIN_CONFIDENCE, ResponseAnalyzer, UrgencyLevel

logger = logging.getLogger(__name__)

FALLBACK_SERVICE = "fallback"

NOT_AVAILABLE = "Service not available"
RATE_LIMITED = "Rate limit exceeded"
INVALID_QUALITY = "Invalid response quality"

SERVICE_TEST_MESSAGE = "Test message for service availability"

# largo mínimo del texto para aceptar la respuesta
MIN_LENGTH = {
    RequestKind.chat: 50,
    RequestKind.diagnosis: 50,
    RequestKind.images: 30,
}


class AvailabilityCache:
    """Cache corto de is_available() por backend, compartido entre requests."""

    def __init__(self, ttl: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self.clock = clock
        self._entries: dict[str, tuple[float, bool]] = {}

    async def is_available(self, backend: AiBackend) -> bool:
        now = self.clock()
        cached = self._entries.get(backend.id)
        if cached and now - cached[0] < self.ttl:
            return cached[1]
        try:
            available = bool(await backend.is_available())
        except Exception as e:
            logger.warning("Availability check for %s raised: %s", backend.id, e)
            available = False
        self._entries[backend.id] = (now, available)
        return available

    def invalidate(self, backend_id: str | None = None) -> None:
        if backend_id is None:
            self._entries.clear()
        else:
            self._entries.pop(backend_id, None)


class AiFallbackCoordinator:
    def __init__(
        self,
        backends: Sequence[AiBackend],
        analyzer: ResponseAnalyzer,
        vision_order: Sequence[str] | None = None,
        availability: AvailabilityCache | None = None,
        backend_timeout: float = 300.0,
    ) -> None:
        self.backends = list(backends)
        self.analyzer = analyzer
        self.availability = availability or AvailabilityCache()
        self.backend_timeout = backend_timeout
        by_id = {b.id: b for b in self.backends}
        if vision_order:
            self.vision_backends = [by_id[i] for i in vision_order if i in by_id]
        else:
            self.vision_backends = list(self.backends)
        self._metrics: dict[tuple[str, str], Counter] = defaultdict(Counter)

    # ---------- API pública ----------

    async def process(self, message: str, context: dict | None = None) -> AiBackendResult:
        request = AiRequest(kind=RequestKind.chat, message=message, context=context or {})
        started = time.perf_counter()
        backend, raw, errors = await self._run_chain(request, self.backends)
        if backend is None:
            return self._chat_fallback(errors, started)
        return self._build_result(backend, raw, errors, self.backends, started)

    async def process_images(self, image_paths: list[str], context: str = "") -> AiBackendResult:
        request = AiRequest(
            kind=RequestKind.images,
            image_paths=list(image_paths),
            context={"notes": context},
        )
        started = time.perf_counter()
        backend, raw, errors = await self._run_chain(request, self.vision_backends)
        if backend is None:
            return self._image_fallback(errors, started)
        return self._build_result(backend, raw, errors, self.vision_backends, started)

    async def process_differential_diagnosis(
        self,
        symptoms: list[str],
        age: int | None = None,
        gender: str | None = None,
    ) -> DiagnosisResult:
        request = AiRequest(kind=RequestKind.diagnosis, symptoms=list(symptoms), age=age, gender=gender)
        started = time.perf_counter()
        backend, raw, errors = await self._run_chain(request, self.backends)
        if backend is None:
            return self._diagnosis_fallback(symptoms, errors, started)

        base = self._build_result(backend, raw, errors, self.backends, started)
        return DiagnosisResult(
            **base.model_dump(exclude={"recommended_actions"}),
            recommended_actions=list(self.analyzer.tables.diagnosis_actions),
            diagnoses=self.analyzer.extract_diagnoses(raw.text),
            recommended_tests=self.analyzer.extract_recommended_tests(raw.text),
        )

    async def service_status(self) -> dict:
        hour = self._hour()
        services = {}
        for backend in self.backends:
            metrics = self._metrics.get((backend.id, hour), Counter())
            services[backend.id] = {
                "available": await self.availability.is_available(backend),
                "remaining_quota": backend.remaining_quota(),
                "models": await self._models(backend),
                "success": metrics["success"],
                "error": metrics["error"],
            }
        return {
            "services": services,
            "fallback_chain_order": [b.id for b in self.backends],
            "vision_chain_order": [b.id for b in self.vision_backends],
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }

    async def test_all_services(self) -> dict[str, dict]:
        """
        Manda un mensaje de prueba a cada backend, salteando la cadena y el
        cache de disponibilidad. No toca las métricas.
        """
        request = AiRequest(kind=RequestKind.chat, message=SERVICE_TEST_MESSAGE)
        results: dict[str, dict] = {}
        for backend in self.backends:
            started = time.perf_counter()
            try:
                raw = await asyncio.wait_for(backend.send(request), timeout=self.backend_timeout)
            except asyncio.TimeoutError:
                error = f"Timed out after {self.backend_timeout:g}s"
            except Exception as e:
                error = str(e) or e.__class__.__name__
            else:
                error = raw.error
            elapsed = round(time.perf_counter() - started, 3)

            if error:
                logger.warning("Service test for %s failed: %s", backend.id, error)
                results[backend.id] = {"status": "error", "error": error, "response_time": elapsed}
                continue

            text = (raw.text or "").strip()
            results[backend.id] = {
                "status": "success",
                "response_time": elapsed,
                "response_length": len(text),
                "confidence": self.analyzer.confidence_score(text, backend.confidence_baseline),
            }
        return results

    # ---------- cadena ----------

    async def _run_chain(
        self, request: AiRequest, chain: Sequence[AiBackend]
    ) -> tuple[AiBackend | None, RawResponse | None, dict[str, str]]:
        errors: dict[str, str] = {}
        min_length = MIN_LENGTH[request.kind]

        for backend in chain:
            logger.info("Attempting AI %s request with %s", request.kind.value, backend.id)

            if not await self.availability.is_available(backend):
                errors[backend.id] = NOT_AVAILABLE
                continue

            if not self._has_quota(backend):
                errors[backend.id] = RATE_LIMITED
                continue

            try:
                raw = await asyncio.wait_for(backend.send(request), timeout=self.backend_timeout)
            except asyncio.TimeoutError:
                errors[backend.id] = f"Timed out after {self.backend_timeout:g}s"
                self._record(backend.id, "error")
                logger.warning("AI service %s timed out", backend.id)
                continue
            except Exception as e:
                errors[backend.id] = str(e) or e.__class__.__name__
                self._record(backend.id, "error")
                logger.warning("AI service %s failed: %s", backend.id, e)
                continue

            if not self._is_valid(raw, min_length):
                errors[backend.id] = INVALID_QUALITY
                self._record(backend.id, "error")
                continue

            self._record(backend.id, "success")
            logger.info("AI processing successful with %s", backend.id)
            return backend, raw, errors

        logger.error("All AI services failed: %s", errors)
        return None, None, errors

    @staticmethod
    async def _models(backend: AiBackend) -> list[str] | None:
        try:
            return await backend.models()
        except Exception as e:
            logger.warning("Model listing for %s raised: %s", backend.id, e)
            return None

    @staticmethod
    def _has_quota(backend: AiBackend) -> bool:
        # backends sin cuota devuelven None: siempre hay capacidad
        try:
            remaining = backend.remaining_quota()
        except Exception as e:
            logger.warning("Quota check for %s raised: %s", backend.id, e)
            return True
        return remaining is None or remaining > 0

    @staticmethod
    def _is_valid(raw: RawResponse | None, min_length: int) -> bool:
        if raw is None or raw.error:
            return False
        text = (raw.text or "").strip()
        return len(text) > min_length

    def _build_result(
        self,
        backend: AiBackend,
        raw: RawResponse,
        errors: dict[str, str],
        chain: Sequence[AiBackend],
        started: float,
    ) -> AiBackendResult:
        text = raw.text.strip()
        return AiBackendResult(
            text=text,
            confidence_score=self.analyzer.confidence_score(text, backend.confidence_baseline),
            urgency_level=self.analyzer.urgency_level(text),
            safety_warnings=self.analyzer.safety_warnings(text),
            service_used=backend.id,
            fallback_used=backend is not chain[0],
            errors=dict(errors),
            model_used=raw.model,
            processing_time=round(time.perf_counter() - started, 3),
        )

    # ---------- fallbacks estáticos ----------

    def _chat_fallback(self, errors: dict[str, str], started: float) -> AiBackendResult:
        fb = self.analyzer.tables.fallback
        return AiBackendResult(
            text=fb.chat_text,
            confidence_score=MIN_CONFIDENCE,
            urgency_level=UrgencyLevel.high,
            safety_warnings=list(fb.chat_warnings),
            service_used=FALLBACK_SERVICE,
            fallback_used=True,
            errors=dict(errors),
            processing_time=round(time.perf_counter() - started, 3),
            recommended_actions=list(fb.chat_actions),
        )

    def _image_fallback(self, errors: dict[str, str], started: float) -> AiBackendResult:
        fb = self.analyzer.tables.fallback
        return AiBackendResult(
            text=fb.image_summary,
            confidence_score=MIN_CONFIDENCE,
            urgency_level=UrgencyLevel.high,
            safety_warnings=list(fb.image_warnings),
            service_used=FALLBACK_SERVICE,
            fallback_used=True,
            errors=dict(errors),
            processing_time=round(time.perf_counter() - started, 3),
            recommended_actions=list(fb.image_actions),
        )

    def _diagnosis_fallback(
        self, symptoms: list[str], errors: dict[str, str], started: float
    ) -> DiagnosisResult:
        fb = self.analyzer.tables.fallback
        symptoms_text = " ".join(symptoms)
        # ante la duda, nunca "routine"
        urgency = (
            UrgencyLevel.emergency
            if self.analyzer.has_urgent_symptoms(symptoms_text)
            else UrgencyLevel.high
        )
        return DiagnosisResult(
            # replace y no format: un template propio puede traer otras llaves
            text=fb.diagnosis_guidance.replace("{symptoms}", ", ".join(symptoms[:5])),
            confidence_score=MIN_CONFIDENCE,
            urgency_level=urgency,
            safety_warnings=list(fb.diagnosis_warnings),
            service_used=FALLBACK_SERVICE,
            fallback_used=True,
            errors=dict(errors),
            processing_time=round(time.perf_counter() - started, 3),
            recommended_actions=list(fb.diagnosis_actions),
            diagnoses=list(fb.diagnosis_candidates),
            recommended_tests=list(fb.diagnosis_tests),
        )

    # ---------- métricas ----------

    @staticmethod
    def _hour() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d-%H")

    def _record(self, backend_id: str, outcome: str) -> None:
        hour = self._hour()
        # sólo se guardan los contadores de la hora actual
        for key in [k for k in self._metrics if k[1] != hour]:
            del self._metrics[key]
        self._metrics[(backend_id, hour)][outcome] += 1
