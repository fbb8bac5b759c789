"""
Enrollment state machine for keystroke and voice profiles.

Each ``(context, identity, modality)`` has at most one enrollment session
moving through ``IDLE -> COLLECTING -> TRAINING -> COMPLETE`` (or
``FAILED``). Samples are persisted through the integrity store under their
index, so re-submitting an index replaces the earlier sample instead of
appending a duplicate, and a session survives a process restart.

Once the required number of samples is stored the profile is built
(keystroke: autoencoder training, voice: template averaging), persisted,
and the in-progress samples are removed.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import structlog

from .config import MAX_WORKERS, AuthConfig
from .data_models import (
    AggregatedVoiceFeatures,
    EnrollmentProgress,
    EnrollmentSession,
    EnrollmentState,
    Modality,
    Profile,
    TrainedProfile,
)
from .exceptions import (
    BehavioralAuthError,
    InsufficientSamplesError,
    IntegrityError,
    ModelError,
    StoreError,
    ValidationError,
)
from .integrity_store import EnrollmentSample, IntegrityStore
from .keystroke_features import KeystrokeSample, coerce_feature_vector
from .training import build_voice_profile, train_keystroke_profile

# Initialize structured logger
logger = structlog.get_logger(__name__)

SessionKey = Tuple[str, str, Modality]


def infer_modality(sample: Union[KeystrokeSample, AggregatedVoiceFeatures]) -> Modality:
    """Voice for ``AggregatedVoiceFeatures``, keystroke for everything else."""
    if isinstance(sample, AggregatedVoiceFeatures):
        return Modality.VOICE
    return Modality.KEYSTROKE


def _require_scope(identity: str, context: str) -> None:
    if not identity or not isinstance(identity, str):
        raise ValueError("identity must be a non-empty string")
    if not context or not isinstance(context, str):
        raise ValueError("context must be a non-empty string")


class EnrollmentController:
    """
    Collects enrollment samples and builds profiles.

    Parameters
    ----------
    store : IntegrityStore
        Store receiving samples and profiles.
    config : Optional[AuthConfig], default=None
        Pipeline configuration; must match the one used for verification.
    max_workers : Optional[int], default=None
        Threads used by ``add_sample_async``.

    Examples
    --------
    >>> controller = EnrollmentController(store, AuthConfig())
    >>> progress = controller.add_sample("alice", "https://example.com", 0, vector)
    >>> progress.progress
    '1/5'
    """

    def __init__(
        self,
        store: IntegrityStore,
        config: Optional[AuthConfig] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.store = store
        self.config = config or AuthConfig()
        self.max_workers = max_workers or MAX_WORKERS
        self._sessions: Dict[SessionKey, EnrollmentSession] = {}
        self._lock = threading.RLock()
        self._executor: Optional[ThreadPoolExecutor] = None

        logger.info(
            "EnrollmentController initialized",
            keystroke_samples_required=self.config.keystroke_samples_required,
            voice_samples_required=self.config.voice_samples_required,
        )

    def _required(self, modality: Modality) -> int:
        if modality == Modality.VOICE:
            return self.config.voice_samples_required
        return self.config.keystroke_samples_required

    def _session(self, identity: str, context: str, modality: Modality) -> EnrollmentSession:
        key = (context, identity, modality)
        session = self._sessions.get(key)
        if session is None or session.state == EnrollmentState.COMPLETE:
            session = EnrollmentSession(
                identity=identity,
                context=context,
                modality=modality,
                required=self._required(modality),
            )
            # Samples persisted by an earlier process belong to this session
            session.record_count(len(self.store.load_samples(identity, context, modality)))
            if session.collected:
                session.state = EnrollmentState.COLLECTING
            self._sessions[key] = session
        return session

    @staticmethod
    def _progress(
        session: EnrollmentSession,
        message: str,
        profile_created: bool = False,
        threshold: Optional[float] = None,
    ) -> EnrollmentProgress:
        return EnrollmentProgress(
            identity=session.identity,
            context=session.context,
            modality=session.modality,
            state=session.state,
            collected=session.collected,
            required=session.required,
            profile_created=profile_created,
            message=message,
            threshold=threshold,
        )

    def _validate_sample(self, sample, modality: Modality) -> None:
        if modality == Modality.KEYSTROKE:
            coerce_feature_vector(sample, self.config.feature_length)
        elif sample.mfcc_mean.size == 0 or not np.isfinite(sample.mfcc_mean).all():
            raise ValidationError(
                "Voice sample has no usable cepstral coefficients",
                field="sample",
                modality="voice",
            )

    def add_sample(
        self,
        identity: str,
        context: str,
        index: int,
        sample: Union[KeystrokeSample, AggregatedVoiceFeatures],
    ) -> EnrollmentProgress:
        """
        Store an enrollment sample and build the profile once enough exist.

        Parameters
        ----------
        identity : str
            Identity being enrolled.
        context : str
            Scope (e.g. origin) the identity belongs to.
        index : int
            Position of the sample in the session; re-submitting an index
            overwrites the earlier sample.
        sample : Union[KeystrokeSample, AggregatedVoiceFeatures]
            Keystroke vector or aggregated voice features.

        Returns
        -------
        EnrollmentProgress
            ``COLLECTING`` with ``collected/required`` until the threshold is
            reached, then ``COMPLETE`` with ``profile_created=True``.

        Raises
        ------
        ValueError
            If identity or context is missing.
        ValidationError
            If the sample or index is malformed.
        ModelError
            If training failed on every attempt; the session stays
            ``COLLECTING``.
        StoreError
            If the finished profile could not be persisted; the session
            stays ``COLLECTING``.
        """
        _require_scope(identity, context)
        if not isinstance(index, int) or isinstance(index, bool) or index < 0:
            raise ValidationError(
                f"Sample index must be a non-negative integer, got {index!r}", field="index"
            )

        modality = infer_modality(sample)
        self._validate_sample(sample, modality)

        with self._lock:
            session = self._session(identity, context, modality)
            session.state = EnrollmentState.COLLECTING
            self.store.save_sample(identity, context, index, sample)
            samples = self.store.load_samples(identity, context, modality)
            session.record_count(len(samples))

            logger.info(
                "Enrollment sample stored",
                modality=modality.value,
                index=index,
                collected=len(samples),
                required=session.required,
            )

            if len(samples) < session.required:
                label = "Voice sample" if modality == Modality.VOICE else "Sample"
                return self._progress(
                    session,
                    f"{label} {len(samples)}/{session.required} captured. Continue enrollment.",
                )

            session.state = EnrollmentState.TRAINING

        return self._train_and_persist(session, samples)

    def _build_profile(
        self, session: EnrollmentSession, samples: List[EnrollmentSample]
    ) -> Profile:
        if session.modality == Modality.KEYSTROKE:
            return train_keystroke_profile(samples, self.config)
        return build_voice_profile(samples, self.config)

    def _train_and_persist(
        self, session: EnrollmentSession, samples: Dict[int, EnrollmentSample]
    ) -> EnrollmentProgress:
        key = (session.context, session.identity, session.modality)

        try:
            profile = self._build_profile(session, list(samples.values()))
        except ModelError as e:
            with self._lock:
                session.state = EnrollmentState.COLLECTING
                session.last_error = e.message
            logger.error(
                "Profile training failed", modality=session.modality.value, **e.to_dict()
            )
            raise
        except BehavioralAuthError as e:
            with self._lock:
                session.state = EnrollmentState.FAILED
                session.last_error = e.message
            logger.error(
                "Profile creation failed", modality=session.modality.value, **e.to_dict()
            )
            raise

        with self._lock:
            if self._sessions.get(key) is not session:
                session.state = EnrollmentState.IDLE
                logger.info("Enrollment cancelled during training", modality=session.modality.value)
                return self._progress(session, "Enrollment cancelled")

            try:
                self.store.save_profile(session.identity, session.context, profile)
                self.store.delete_samples(session.identity, session.context, session.modality)
            except StoreError as e:
                session.state = EnrollmentState.COLLECTING
                session.last_error = e.message
                logger.error(
                    "Profile could not be persisted", modality=session.modality.value, **e.to_dict()
                )
                raise

            session.state = EnrollmentState.COMPLETE
            session.last_error = None

        threshold = profile.threshold if isinstance(profile, TrainedProfile) else None
        logger.info("Enrollment complete", modality=session.modality.value)
        return self._progress(
            session,
            "Enrollment complete. Profile created.",
            profile_created=True,
            threshold=threshold,
        )

    def add_sample_async(
        self,
        identity: str,
        context: str,
        index: int,
        sample: Union[KeystrokeSample, AggregatedVoiceFeatures],
    ) -> "Future[EnrollmentProgress]":
        """Run ``add_sample`` on a worker thread."""
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="enrollment"
                )
            executor = self._executor
        return executor.submit(self.add_sample, identity, context, index, sample)

    def retry_training(
        self, identity: str, context: str, modality: Modality
    ) -> EnrollmentProgress:
        """
        Rebuild the profile from the stored samples after a failed attempt.

        Raises
        ------
        InsufficientSamplesError
            If fewer samples than required are stored.
        """
        _require_scope(identity, context)
        modality = Modality(modality)

        with self._lock:
            session = self._session(identity, context, modality)
            samples = self.store.load_samples(identity, context, modality)
            session.record_count(len(samples))
            if len(samples) < session.required:
                raise InsufficientSamplesError(
                    len(samples), session.required, modality=modality.value
                )
            session.state = EnrollmentState.TRAINING

        return self._train_and_persist(session, samples)

    def get_progress(
        self, identity: str, context: str, modality: Modality
    ) -> EnrollmentProgress:
        """Current state of the session, or of the stored profile when none is active."""
        _require_scope(identity, context)
        modality = Modality(modality)

        with self._lock:
            session = self._sessions.get((context, identity, modality))
            if session is not None:
                message = session.last_error or ""
                return self._progress(
                    session, message, profile_created=session.state == EnrollmentState.COMPLETE
                )

            collected = len(self.store.load_samples(identity, context, modality))
            try:
                enrolled = self.store.load_profile(identity, context, modality) is not None
            except IntegrityError:
                logger.warning("Stored profile failed verification", modality=modality.value)
                enrolled = False

        if collected:
            state = EnrollmentState.COLLECTING
        elif enrolled:
            state = EnrollmentState.COMPLETE
        else:
            state = EnrollmentState.IDLE

        return EnrollmentProgress(
            identity=identity,
            context=context,
            modality=modality,
            state=state,
            collected=collected,
            required=self._required(modality),
            profile_created=enrolled,
        )

    def cancel(self, identity: str, context: str, modality: Modality) -> bool:
        """
        Discard the in-progress attempt and its samples.

        A training run already underway finishes but its profile is not
        persisted. Existing profiles are kept.

        Returns
        -------
        bool
            True when there was anything to discard.
        """
        _require_scope(identity, context)
        modality = Modality(modality)

        with self._lock:
            session = self._sessions.pop((context, identity, modality), None)
            removed = self.store.delete_samples(identity, context, modality)

        logger.info("Enrollment cancelled", modality=modality.value, samples_removed=removed)
        return session is not None or removed > 0

    def shutdown(self, wait: bool = True) -> None:
        """Stop the background worker pool."""
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
