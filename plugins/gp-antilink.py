"""Delete WhatsApp group invite links posted by non-admins when antilink is on."""

import re

tags = ["admin"]

_INVITE = re.compile(r"chat\.whatsapp\.com/[0-9A-Za-z]{20,24}", re.I)


async def before(m, ctx):
    if not m.is_group or m.from_me or not ctx.chat.get("antilink"):
        return False
    if ctx.is_admin or ctx.is_owner or not _INVITE.search(m.text):
        return False
    if ctx.is_bot_admin:
        await ctx.transport.delete_message(m.key)
    return True
