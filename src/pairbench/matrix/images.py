"""Image resolution: turn a selection pattern into ``{identifier: image}``.

Building images is out of scope; pairbench pairs whatever images are
already available. Two resolvers are provided:

    StaticImageResolver: an explicit mapping, typically from tests or a
        config file.
    LocalImageResolver: local Docker images under a repository prefix,
        e.g. ``pairbench/clients/geth:latest`` resolves to ``geth``.

Patterns are regular expressions searched anywhere in the identifier. An
empty pattern selects everything.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from pairbench.core.errors import ConfigError
from pairbench.core.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class ImageResolver(Protocol):
    def resolve(self, pattern: str) -> dict[str, str]: ...


class _ImageLister(Protocol):
    def list_images(self, repository_prefix: str) -> list[dict[str, Any]]: ...


def compile_pattern(pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise ConfigError(f"Invalid selection pattern {pattern!r}: {exc}", cause=exc).with_context(
            pattern=pattern
        ) from exc


def select(identifiers: Mapping[str, str], pattern: str) -> dict[str, str]:
    """Keep the entries whose identifier matches ``pattern``, sorted by identifier."""
    regex = compile_pattern(pattern)
    return {k: identifiers[k] for k in sorted(identifiers) if regex.search(k)}


class StaticImageResolver:
    """Resolves against a fixed ``{identifier: image}`` mapping."""

    def __init__(self, images: Mapping[str, str]) -> None:
        self.images = dict(images)

    def resolve(self, pattern: str) -> dict[str, str]:
        return select(self.images, pattern)


class LocalImageResolver:
    """Resolves against images present in the local Docker daemon.

    Parameters
    ----------
    runtime
        Anything with ``list_images(prefix)``, normally
        :class:`~pairbench.matrix.container.DockerCliRuntime`.
    repository_prefix
        Repository prefix shared by the images of one role.
    """

    def __init__(self, runtime: _ImageLister, repository_prefix: str) -> None:
        self.runtime = runtime
        self.repository_prefix = repository_prefix

    def available(self) -> dict[str, str]:
        images: dict[str, str] = {}
        for entry in self.runtime.list_images(self.repository_prefix):
            repository = entry.get("Repository", "")
            tag = entry.get("Tag", "")
            name = repository[len(self.repository_prefix):]
            if not name:
                continue
            if tag and tag not in ("latest", "<none>"):
                identifier, image = f"{name}:{tag}", f"{repository}:{tag}"
            else:
                identifier, image = name, f"{repository}:{tag or 'latest'}"
                if tag == "<none>":
                    image = entry.get("ID", repository)
            images[identifier] = image
        return images

    def resolve(self, pattern: str) -> dict[str, str]:
        resolved = select(self.available(), pattern)
        logger.debug("images.resolved", prefix=self.repository_prefix, pattern=pattern, count=len(resolved))
        return resolved
