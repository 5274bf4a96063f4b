"""Latency check."""

import time

command = ["ping", "p"]
tags = ["info"]
help = ["ping"]
exp = 3


async def handler(m, ctx):
    latency = max(0.0, time.time() - m.timestamp) if m.timestamp else 0.0
    await ctx.reply(m, f"🏓 Pong! {latency * 1000:.0f} ms")
