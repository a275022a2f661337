"""Avatar image localization.

``<img>`` ``src`` and ``srcset`` candidates on a configured avatar host are
repointed at ``avatars/<hash>.<ext>`` when a fresh local copy exists, and
queued for background download otherwise. The file extension comes from
the downloaded bytes, since avatar URLs rarely carry one.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from pagecache.keys import content_hash
from pagecache.markup import IMG_TAG_RE, CommentIndex, apply_replacements, set_attr, tag_attrs
from pagecache.store import AVATARS

if TYPE_CHECKING:
    from pagecache.pipeline import PassContext

log = structlog.get_logger()

IMAGE_EXTENSIONS = (".png", ".jpg", ".gif", ".webp", ".svg")


def sniff_extension(data: bytes) -> str | None:
    """Detect the image type from its leading bytes."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return ".png"
    if data.startswith(b"\xff\xd8\xff"):
        return ".jpg"
    if data.startswith((b"GIF87a", b"GIF89a")):
        return ".gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return ".webp"
    head = data[:256].lstrip().lower()
    if head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in data[:1024].lower()):
        return ".svg"
    return None


def local_copy(url: str, ctx: PassContext) -> str | None:
    """Public URL of a fresh local copy of ``url``, if one exists."""
    key = content_hash(url)
    ttl = ctx.settings.cache.asset_ttl_seconds
    for extension in IMAGE_EXTENSIONS:
        path = ctx.store.path_for(AVATARS, f"{key}{extension}")
        if ctx.store.is_fresh(path, ttl):
            return ctx.store.url_for(path)
    return None


def apply(html: str, ctx: PassContext) -> str:
    if not ctx.settings.optimize.local_avatars:
        return html

    hosts = {host.lower() for host in ctx.settings.fetcher.avatar_hosts}
    comments = CommentIndex(html)
    replacements: list[tuple[int, int, str]] = []

    def localize(ref: str) -> str | None:
        url = ctx.locator.absolute_url(ref, ctx.page_url)
        if ctx.locator.host_of(url) not in hosts:
            return None
        local = local_copy(url, ctx)
        if local is None:
            schedule(url, ctx)
        return local

    for match in IMG_TAG_RE.finditer(html):
        if comments.contains(match.start()):
            continue
        tag = match.group(0)
        attrs = tag_attrs(tag)
        new_tag = tag

        src = attrs.get("src", "").strip()
        if src:
            local = localize(src)
            if local is not None:
                new_tag = set_attr(new_tag, "src", local)

        srcset = attrs.get("srcset", "").strip()
        if srcset:
            candidates = []
            changed = False
            for candidate in srcset.split(","):
                ref, _, descriptor = candidate.strip().partition(" ")
                local = localize(ref) if ref else None
                if local is not None:
                    ref = local
                    changed = True
                candidates.append(f"{ref} {descriptor.strip()}".strip())
            if changed:
                new_tag = set_attr(new_tag, "srcset", ", ".join(candidates))

        if new_tag != tag:
            replacements.append((match.start(), match.end(), new_tag))

    return apply_replacements(html, replacements)


def schedule(url: str, ctx: PassContext) -> bool:
    if ctx.jobs is None or ctx.fetcher is None:
        log.debug("avatar_localize_unavailable", url=url)
        return False
    return ctx.jobs.enqueue(
        lambda: localize_avatar(url, ctx),
        dedupe_key=f"avatar-{content_hash(url)}",
        lock_ttl_seconds=ctx.settings.cache.lock_ttl_seconds,
    )


async def localize_avatar(url: str, ctx: PassContext) -> bool:
    """Download one avatar image into the cache."""
    if ctx.fetcher is None:
        return False
    data = await ctx.fetcher.fetch(url, ctx.allowlist)
    if data is None:
        return False
    extension = sniff_extension(data)
    if extension is None:
        log.warning("avatar_unknown_type", url=url, content_length=len(data))
        return False

    path = ctx.store.path_for(AVATARS, f"{content_hash(url)}{extension}")
    if not ctx.store.write(path, data):
        return False

    log.info("avatar_localized", url=url, path=str(path))
    if ctx.admin is not None:
        ctx.admin.purge_pages()
    return True
