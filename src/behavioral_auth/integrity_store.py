"""
Tamper-evident persistence of profiles and enrollment samples.

Every record is serialized to canonical JSON (sorted keys, compact
separators, NaN rejected) and tagged with HMAC-SHA256 over the whole envelope
(id, kind, payload and timestamps). The tag key is derived from the
installation secret. Loading a record checks that the stored bytes are in
canonical form, recomputes the tag and compares it in constant time; a
record that fails either check is never returned.

Records are addressed by structured ``StoreKey`` values scoped by context
and identity, so deleting one identity or one context removes every record
kind in that scope.
"""

import hashlib
import hmac
import json
from collections import Counter
from typing import Any, Dict, Iterator, List, Optional, Union

import numpy as np
import structlog

from .data_models import (
    AggregatedVoiceFeatures,
    Modality,
    PersistedRecord,
    Profile,
    RecordKind,
    StoreKey,
    TrainedProfile,
    VoiceProfile,
    profile_from_dict,
)
from .exceptions import IntegrityError, ModelError, ValidationError
from .keystroke_features import KeystrokeSample, coerce_feature_vector
from .secrets_provider import SecretProvider, derive_tag_key
from .storage_backends import InMemoryBackend, PersistenceBackend

# Initialize structured logger
logger = structlog.get_logger(__name__)

EnrollmentSample = Union[np.ndarray, AggregatedVoiceFeatures]

_PROFILE_KINDS = (RecordKind.KEYSTROKE_MODEL, RecordKind.VOICE_PROFILE)


def canonical_json(value: Any) -> bytes:
    """
    Serialize a value deterministically.

    Raises
    ------
    ValidationError
        If the value contains NaN/infinity or is not JSON-serializable.
    """
    try:
        return json.dumps(
            value, sort_keys=True, separators=(",", ":"), allow_nan=False, ensure_ascii=False
        ).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Payload is not serializable: {e}", field="payload")


class IntegrityStore:
    """
    Persistence layer that detects modification of stored records.

    Parameters
    ----------
    backend : Optional[PersistenceBackend], default=None
        Key/value backend; an ``InMemoryBackend`` when None.
    secret_provider : SecretProvider
        Source of the installation secret the tag key is derived from.

    Examples
    --------
    >>> store = IntegrityStore(InMemoryBackend(), StaticSecretProvider(b"secret"))
    >>> key = StoreKey("https://example.com", "alice", RecordKind.VOICE_PROFILE)
    >>> store.persist(key, {"value": 1}).kind
    <RecordKind.VOICE_PROFILE: 'voice_profile'>
    >>> store.load(key)
    {'value': 1}
    """

    def __init__(
        self,
        backend: Optional[PersistenceBackend] = None,
        secret_provider: Optional[SecretProvider] = None,
    ) -> None:
        if secret_provider is None:
            raise ValueError("secret_provider is required")

        self.backend = backend if backend is not None else InMemoryBackend()
        self._tag_key = derive_tag_key(secret_provider.get_secret())

        logger.info("IntegrityStore initialized", backend=type(self.backend).__name__)

    # ------------------------------------------------------------------
    # Generic records
    # ------------------------------------------------------------------

    def _compute_tag(self, record: PersistedRecord) -> str:
        body = {k: v for k, v in record.to_dict().items() if k != "tag"}
        return hmac.new(self._tag_key, canonical_json(body), hashlib.sha256).hexdigest()

    def _read_record(self, record_id: str, kind: RecordKind) -> Optional[PersistedRecord]:
        raw = self.backend.get(record_id)
        if raw is None:
            return None

        try:
            record = PersistedRecord.from_dict(json.loads(raw.decode("utf-8")))
        except (UnicodeDecodeError, ValueError, KeyError, TypeError):
            raise IntegrityError(record_id, reason="undecodable record")

        if record.record_id != record_id or record.kind != kind:
            raise IntegrityError(record_id, reason="record id mismatch")

        if not isinstance(record.payload, dict) or not isinstance(record.tag, str):
            raise IntegrityError(record_id, reason="malformed record")

        # Records are written in canonical form only
        try:
            canonical = canonical_json(record.to_dict())
        except ValidationError:
            raise IntegrityError(record_id, reason="malformed record")
        if canonical != raw:
            raise IntegrityError(record_id, reason="non-canonical record")

        if not hmac.compare_digest(self._compute_tag(record), record.tag):
            raise IntegrityError(record_id)

        return record

    def persist(self, key: StoreKey, payload: Dict[str, Any]) -> PersistedRecord:
        """
        Tag and store a payload, replacing any record under the same key.

        The tag covers every field of the stored envelope except itself.

        Parameters
        ----------
        key : StoreKey
            Record address.
        payload : Dict[str, Any]
            JSON-compatible payload.

        Returns
        -------
        PersistedRecord
            The stored envelope.

        Raises
        ------
        ValidationError
            If the payload cannot be serialized canonically.
        StorageError
            If the backend write fails.
        """
        record_id = key.encode()
        canonical_json(payload)

        try:
            existing = self._read_record(record_id, key.kind)
        except IntegrityError:
            logger.warning("Replacing record that failed integrity check", kind=key.kind.value)
            existing = None

        record = PersistedRecord(record_id=record_id, kind=key.kind, payload=payload, tag="")
        if existing is not None:
            record.created_at = existing.created_at
        record.tag = self._compute_tag(record)

        self.backend.put(record_id, canonical_json(record.to_dict()))
        logger.debug("Record persisted", kind=key.kind.value, index=key.index)
        return record

    def load(self, key: StoreKey) -> Optional[Dict[str, Any]]:
        """
        Load and verify a payload.

        Returns
        -------
        Optional[Dict[str, Any]]
            The payload, or None when no record exists.

        Raises
        ------
        IntegrityError
            If the record is undecodable or its tag does not verify.
        """
        record = self._read_record(key.encode(), key.kind)
        return None if record is None else record.payload

    def delete(self, key: StoreKey) -> bool:
        return self.backend.delete(key.encode())

    def _iter_keys(self) -> Iterator[StoreKey]:
        for record_id in self.backend.keys():
            try:
                yield StoreKey.decode(record_id)
            except (ValueError, TypeError, ValidationError):
                logger.warning("Skipping record with unrecognised id")

    def _delete_where(self, predicate) -> int:
        removed = 0
        for key in list(self._iter_keys()):
            if predicate(key) and self.delete(key):
                removed += 1
        return removed

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def save_profile(self, identity: str, context: str, profile: Profile) -> PersistedRecord:
        """Persist a profile, replacing any previous profile of the same modality."""
        if isinstance(profile, TrainedProfile):
            kind = RecordKind.KEYSTROKE_MODEL
        elif isinstance(profile, VoiceProfile):
            kind = RecordKind.VOICE_PROFILE
        else:
            raise ValidationError(
                f"Unsupported profile type {type(profile).__name__}", field="profile"
            )

        record = self.persist(StoreKey(context, identity, kind), profile.to_dict())
        logger.info("Profile saved", kind=kind.value)
        return record

    def load_profile(
        self, identity: str, context: str, modality: Modality
    ) -> Optional[Profile]:
        """
        Load a verified profile.

        Returns
        -------
        Optional[Profile]
            The profile, or None when none is enrolled.

        Raises
        ------
        IntegrityError
            If the record fails verification or does not describe a profile
            of the requested modality.
        """
        key = StoreKey(context, identity, RecordKind.profile_kind(Modality(modality)))
        payload = self.load(key)
        if payload is None:
            return None

        try:
            profile = profile_from_dict(payload)
        except (ValidationError, ModelError, KeyError, TypeError, ValueError):
            raise IntegrityError(key.encode(), reason="malformed profile")

        if profile.modality != Modality(modality):
            raise IntegrityError(key.encode(), reason="profile modality mismatch")
        return profile

    # ------------------------------------------------------------------
    # Enrollment samples
    # ------------------------------------------------------------------

    def save_sample(
        self,
        identity: str,
        context: str,
        index: int,
        sample: Union[KeystrokeSample, AggregatedVoiceFeatures],
    ) -> PersistedRecord:
        """Persist one enrollment sample at ``index``, overwriting any previous one."""
        if isinstance(sample, AggregatedVoiceFeatures):
            kind = RecordKind.VOICE_SAMPLE
            payload = sample.to_dict()
        else:
            kind = RecordKind.KEYSTROKE_SAMPLE
            payload = {"vector": [float(v) for v in coerce_feature_vector(sample)]}

        return self.persist(StoreKey(context, identity, kind, index=index), payload)

    def load_samples(
        self, identity: str, context: str, modality: Modality
    ) -> Dict[int, EnrollmentSample]:
        """
        Load the verified enrollment samples of one session, keyed by index.

        Samples failing verification are skipped and logged.
        """
        kind = RecordKind.sample_kind(Modality(modality))
        samples: Dict[int, EnrollmentSample] = {}

        for key in self._iter_keys():
            if (key.context, key.identity, key.kind) != (context, identity, kind):
                continue
            if key.index is None:
                continue

            try:
                payload = self.load(key)
                if payload is None:
                    continue
                if kind == RecordKind.VOICE_SAMPLE:
                    samples[key.index] = AggregatedVoiceFeatures.from_dict(payload)
                else:
                    samples[key.index] = coerce_feature_vector(payload["vector"])
            except (IntegrityError, ValidationError, KeyError, TypeError, ValueError) as e:
                logger.warning(
                    "Skipping enrollment sample that failed verification",
                    kind=kind.value,
                    index=key.index,
                    error=str(e),
                )

        return dict(sorted(samples.items()))

    def delete_samples(self, identity: str, context: str, modality: Modality) -> int:
        kind = RecordKind.sample_kind(Modality(modality))
        return self._delete_where(
            lambda k: (k.context, k.identity, k.kind) == (context, identity, kind)
        )

    # ------------------------------------------------------------------
    # Scoped deletion and inspection
    # ------------------------------------------------------------------

    def delete_identity(self, context: str, identity: str) -> int:
        """Remove every record of one identity within one context."""
        removed = self._delete_where(
            lambda k: k.context == context and k.identity == identity
        )
        logger.info("Identity data cleared", records_removed=removed)
        return removed

    def delete_context(self, context: str) -> int:
        """Remove every record of every identity within one context."""
        removed = self._delete_where(lambda k: k.context == context)
        logger.info("Context data cleared", records_removed=removed)
        return removed

    def wipe(self) -> int:
        """Remove every record in the store."""
        removed = 0
        for record_id in self.backend.keys():
            if self.backend.delete(record_id):
                removed += 1
        logger.info("Store wiped", records_removed=removed)
        return removed

    def list_identities(self, context: str) -> List[str]:
        """Identities with at least one enrolled profile in ``context``."""
        return sorted(
            {
                k.identity
                for k in self._iter_keys()
                if k.context == context and k.kind in _PROFILE_KINDS
            }
        )

    def storage_stats(self) -> Dict[str, Any]:
        """Record counts per kind plus the number of contexts and identities."""
        keys = list(self._iter_keys())
        by_kind = Counter(k.kind.value for k in keys)
        return {
            "total_records": len(keys),
            "records_by_kind": {kind.value: by_kind.get(kind.value, 0) for kind in RecordKind},
            "contexts": len({k.context for k in keys}),
            "identities": len({(k.context, k.identity) for k in keys}),
            "profiles": sum(1 for k in keys if k.kind in _PROFILE_KINDS),
        }
