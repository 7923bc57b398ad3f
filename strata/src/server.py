"""FastAPI router for the Strata corpus manager.

Exposes REST endpoints for code lookup, fragment content, derived-tier
updates, search, canonical document generation, index rebuilds, and
validation. Designed to be mounted at /api/strata/ by the parent
application.

All endpoint functions are synchronous because every operation is
filesystem-bound. FastAPI runs sync handlers in a thread pool.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from shared.hardening import ErrorFormatter, UnsafePathError
from strata.src.assembler import DocumentAssembler
from strata.src.config import StrataConfig
from strata.src.errors import PartialFailureError, StrataError
from strata.src.index import IndexBuilder
from strata.src.models import Tier
from strata.src.store import TierStore
from strata.src.validator import Validator

logger = logging.getLogger(__name__)

router = APIRouter()

# ---------------------------------------------------------------------------
# Module-level service instances (initialized by init_strata)
# ---------------------------------------------------------------------------

_config: StrataConfig | None = None
_store: TierStore | None = None
_assembler: DocumentAssembler | None = None
_index_builder: IndexBuilder | None = None

_formatter = ErrorFormatter()


def init_strata(config: StrataConfig, index_backend: str = "symlink") -> TierStore:
    """Initialize the store and the services built on it.

    Call this once at application startup before any requests are served.

    Args:
        config: Corpus configuration.
        index_backend: Registered index backend name.

    Returns:
        The initialized TierStore.
    """
    global _config, _store, _assembler, _index_builder

    _config = config
    _store = TierStore(config)
    _assembler = DocumentAssembler(_store)
    _index_builder = IndexBuilder(_store, backend=index_backend)
    logger.info("Strata initialized for %s", config.corpus_root)
    return _store


def get_store() -> TierStore:
    """Return the initialized TierStore or raise.

    Raises:
        HTTPException: If the service has not been initialized.
    """
    if _store is None:
        raise HTTPException(status_code=500, detail="Strata store not initialized")
    return _store


def _get_assembler() -> DocumentAssembler:
    if _assembler is None:
        raise HTTPException(status_code=500, detail="Strata store not initialized")
    return _assembler


def _get_index_builder() -> IndexBuilder:
    if _index_builder is None:
        raise HTTPException(status_code=500, detail="Strata store not initialized")
    return _index_builder


def _http_error(exc: Exception, component: str) -> HTTPException:
    """Translate a caught error into an HTTPException with a friendly body."""
    friendly = _formatter.format(exc, component=component)
    if friendly.http_status >= 500:
        logger.error("%s failed: %s", component, friendly.technical_detail)
    detail: dict[str, Any] = friendly.to_dict()
    if isinstance(exc, PartialFailureError):
        detail["failures"] = exc.to_dict()["failures"]
        if isinstance(exc.result, list):
            detail["result"] = [item.to_dict() for item in exc.result]
        elif exc.result is not None and hasattr(exc.result, "to_dict"):
            detail["result"] = exc.result.to_dict()
    return HTTPException(status_code=friendly.http_status, detail=detail)


def _tier(value: str | None) -> Tier:
    """Parse an optional tier parameter, falling back to the default tier."""
    if value is None:
        return _config.default_tier if _config is not None else Tier.ABSTRACT
    return Tier.parse(value)


# ---------------------------------------------------------------------------
# Pydantic request models
# ---------------------------------------------------------------------------


class DerivedContentUpdate(BaseModel):
    """Request body for storing derived summary/abstract text."""

    content: str = Field(..., min_length=1)


class CanonicalRequest(BaseModel):
    """Request body for canonical document generation."""

    tiers: list[str] | None = None
    force: bool = True
    backup: bool = False
    link_default: bool = False


class ValidateRequest(BaseModel):
    """Request body for a validation run."""

    strict: bool | None = None
    fail_fast: bool | None = None
    check_index: bool = False


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/health")
def health_check() -> dict[str, Any]:
    """Return Strata service health status."""
    return {
        "status": "ok",
        "service": "strata",
        "version": "0.1.0",
        "store_initialized": _store is not None,
        "corpus_exists": bool(_store is not None and _store.root.is_dir()),
    }


# ---------------------------------------------------------------------------
# Codes and sections
# ---------------------------------------------------------------------------


@router.get("/codes")
def list_codes(tier: str | None = None) -> dict[str, Any]:
    """List every code of a tier with its slug and title.

    Args:
        tier: Tier name; the configured default tier when omitted.

    Returns:
        Dict with the tier and a list of code records.
    """
    try:
        store = get_store()
        selected = _tier(tier)
        codes = [
            {
                "code": fragment.code,
                "slug": fragment.slug,
                "title": store.title_of(fragment.code, selected),
                "path": fragment.relative_path,
            }
            for fragment in store.list_all(selected)
        ]
        return {"tier": selected.value, "count": len(codes), "codes": codes}
    except HTTPException:
        raise
    except (StrataError, ValueError, OSError) as exc:
        raise _http_error(exc, "store") from exc


@router.get("/sections")
def list_sections(tier: str | None = None) -> dict[str, Any]:
    """List the top-level sections with their titles."""
    try:
        store = get_store()
        sections = store.list_sections(_tier(tier))
        return {"sections": [s.to_dict() for s in sections]}
    except HTTPException:
        raise
    except (StrataError, ValueError, OSError) as exc:
        raise _http_error(exc, "store") from exc


@router.get("/decode/{code}")
def decode_code(code: str, tier: str | None = None) -> dict[str, Any]:
    """Resolve a code to its fragment path.

    Args:
        code: Code with or without the tag.
        tier: Tier name; the configured default tier when omitted.

    Returns:
        Dict with the normalized code, tier, and corpus-relative path.
    """
    try:
        store = get_store()
        fragment = store.fragment(code, _tier(tier))
        return {
            "code": fragment.code,
            "tier": fragment.tier.value,
            "path": fragment.relative_path,
        }
    except HTTPException:
        raise
    except (StrataError, UnsafePathError, ValueError) as exc:
        raise _http_error(exc, "codec") from exc


# ---------------------------------------------------------------------------
# Fragments
# ---------------------------------------------------------------------------


@router.get("/fragments/{code}")
def get_fragment(code: str, tier: str | None = None) -> dict[str, Any]:
    """Return the content and size of one fragment."""
    try:
        store = get_store()
        fragment = store.fragment(code, _tier(tier))
        return {
            **fragment.to_dict(),
            "path": fragment.relative_path,
            "content": store.get_content(code, fragment.tier),
            "size": store.size_of(code, fragment.tier).to_dict(),
        }
    except HTTPException:
        raise
    except (StrataError, UnsafePathError, ValueError, OSError) as exc:
        raise _http_error(exc, "store") from exc


@router.put("/fragments/{code}/{tier}")
def put_derived_fragment(code: str, tier: str, body: DerivedContentUpdate) -> dict[str, Any]:
    """Store externally derived text for a summary or abstract tier.

    Returns:
        Dict with the written path, its size, and whether the size
        exceeds the tier budget.
    """
    try:
        store = get_store()
        selected = Tier.parse(tier)
        path = store.set_derived_content(code, selected, body.content)
        size = store.size_of(code, selected)
        limit = store.config.size_limit(selected)
        return {
            "code": store.codec.normalize(code),
            "tier": selected.value,
            "path": path.relative_to(store.root).as_posix(),
            "size": size.to_dict(),
            "over_limit": limit is not None and size.bytes > limit,
        }
    except HTTPException:
        raise
    except (StrataError, UnsafePathError, ValueError, OSError) as exc:
        raise _http_error(exc, "store") from exc


@router.get("/search")
def search_fragments(
    pattern: str,
    tier: str | None = None,
    ignore_case: bool = False,
) -> dict[str, Any]:
    """Search one tier for lines matching a regular expression."""
    try:
        store = get_store()
        hits = store.search(pattern, _tier(tier), ignore_case=ignore_case)
        return {"pattern": pattern, "count": len(hits), "hits": [h.to_dict() for h in hits]}
    except HTTPException:
        raise
    except (StrataError, ValueError, OSError) as exc:
        raise _http_error(exc, "store") from exc


# ---------------------------------------------------------------------------
# Batch operations
# ---------------------------------------------------------------------------


@router.post("/canonical")
def generate_canonical(body: CanonicalRequest) -> dict[str, Any]:
    """Assemble and write canonical documents."""
    try:
        assembler = _get_assembler()
        tiers = [Tier.parse(t) for t in body.tiers] if body.tiers else None
        stats = assembler.generate(tiers, force=body.force, backup=body.backup)
        response: dict[str, Any] = {"documents": [s.to_dict() for s in stats]}
        if body.link_default:
            response["default_link"] = str(assembler.link_default())
        return response
    except HTTPException:
        raise
    except (StrataError, ValueError, OSError) as exc:
        raise _http_error(exc, "assembler") from exc


@router.post("/index/rebuild")
def rebuild_index() -> dict[str, Any]:
    """Rebuild and publish the code-addressable index."""
    try:
        result = _get_index_builder().rebuild_index()
        return result.to_dict()
    except HTTPException:
        raise
    except (StrataError, ValueError, OSError) as exc:
        raise _http_error(exc, "index") from exc


@router.post("/validate")
def validate_corpus(body: ValidateRequest) -> dict[str, Any]:
    """Run the validator and return the report."""
    try:
        store = get_store()
        validator = Validator(store, index=_get_index_builder() if body.check_index else None)
        report = validator.validate(fail_fast=body.fail_fast)
        strict = store.config.strict if body.strict is None else body.strict
        return report.to_dict(strict=strict)
    except HTTPException:
        raise
    except (StrataError, ValueError, OSError) as exc:
        raise _http_error(exc, "validator") from exc
