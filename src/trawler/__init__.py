"""Trawler: crawl, chunk, embed and search knowledge-base sources."""
