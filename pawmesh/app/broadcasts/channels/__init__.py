"""
channels — Push delivery backends.

Each provider exposes:
    await send_batch(tokens, notification) → PushBatchResult

Providers send one multicast batch and report a verdict per token.
Batching, pacing and timeouts live in the dispatcher.
"""
