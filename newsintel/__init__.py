"""newsintel – multi-source news intelligence for the trading terminal.

Polls financial wires, syndication feeds and community boards in
parallel, normalises them into one ``NewsItem`` shape, ranks them with a
deterministic impact score, and optionally enriches the top of the
stream through an OpenAI-compatible language-model gateway.

Designed to be polled on each UI refresh via ``poll_once()``; every
refresh is a fresh snapshot.
"""
