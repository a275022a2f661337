"""HTML -> HTML transforms run in order by ``pagecache.pipeline``.

Every pass exposes ``apply(html, ctx) -> str`` (``inline`` exposes two) and
returns its input unchanged when its feature toggle is off.
"""
