"""Mute or unmute a group member: their messages are deleted on arrival."""

from fleetbot.jid import number_of

command = ["mute", "unmute"]
tags = ["group"]
help = ["mute @user", "unmute @user"]
group = True
admin = True
bot_admin = True


async def handler(m, ctx):
    targets = list(m.mentioned)
    if not targets and m.quoted is not None:
        targets = [m.quoted.sender]
    if not targets:
        await ctx.reply(m, f"Tag the user to {ctx.command}.")
        return

    muted = ctx.command == "mute"
    for jid in targets:
        user = ctx.store.users.setdefault(jid, {})
        user["muted"] = muted
    names = ", ".join(f"@{number_of(j)}" for j in targets)
    state = "muted 🔇" if muted else "unmuted 🔊"
    await ctx.reply(m, f"{names} {state}", mentions=targets)
