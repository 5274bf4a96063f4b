"""List every command grouped by tag."""

from collections import defaultdict

command = ["menu", "help"]
tags = ["info"]
help = ["menu"]


async def handler(m, ctx):
    by_tag = defaultdict(list)
    for plugin in ctx.registry.plugins:
        if plugin.disabled or not plugin.help:
            continue
        for tag in plugin.tags or ("other",):
            by_tag[tag].extend(plugin.help)

    prefix = ctx.used_prefix or "."
    lines = [f"*{ctx.settings.bot.name}*"]
    for tag in sorted(by_tag):
        lines.append(f"\n*{tag.upper()}*")
        lines.extend(f"  {prefix}{name}" for name in sorted(set(by_tag[tag])))
    await ctx.reply(m, "\n".join(lines))
