"""Services that wire and run the digest pipeline."""

from src.services.digest_service import DigestService, build_cache_gateways, build_pipeline

__all__ = ["DigestService", "build_cache_gateways", "build_pipeline"]
