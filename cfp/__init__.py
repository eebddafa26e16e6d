"""
cfp

Crawl -> Fingerprint -> Publish pipeline core.
"""
