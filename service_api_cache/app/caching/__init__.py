"""
Response caching package.

Cache records are written wholesale under a request fingerprint and expire
lazily: an expired record is a miss on read and only disappears on an
explicit sweep.
"""
