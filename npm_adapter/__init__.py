"""
npm registry adapter.

Two modes share one blob storage abstraction:
* hosted: accepts ``npm publish``, dist-tag and unpublish mutations and serves
  the resulting package documents and tarballs.
* proxy: a read-through cache in front of an upstream registry with
  time-based freshness and stale-on-failure fallback.
"""
