"""Outbound poster engine."""

from commitcaster.engines.poster.poster import Poster, build_post_payload

__all__ = ["Poster", "build_post_payload"]
