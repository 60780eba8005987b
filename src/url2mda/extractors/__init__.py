"""Extraction strategies and the URL router.

Sub-modules:
- ``base``     : ``ExtractionStrategy`` and ``ExtractionContext``
- ``config``   : TTLs, endpoints and in-page scripts
- ``content``  : HTML to markdown conversion (markdownify, trafilatura)
- ``generic``  : rendered-page strategy used for every unmatched URL
- ``twitter``  : X/Twitter posts (syndication API) and profiles (browser)
- ``reddit``   : subreddit listings (public JSON API with OAuth fallback)
- ``youtube``  : video metadata derived from the URL
- ``router``   : ordered predicate table choosing the strategy
"""
