"""Owner switches for the current chat or the whole bot."""

command = ["enable", "disable"]
tags = ["owner"]
help = ["enable <option>", "disable <option>"]
owner = True

CHAT_OPTIONS = ("welcome", "detect", "antidelete", "antispam", "antilink", "admin_only")
BOT_OPTIONS = ("anti_call", "autoread", "restrict")


async def handler(m, ctx):
    option = ctx.args[0].lower() if ctx.args else ""
    value = ctx.command == "enable"
    if option in CHAT_OPTIONS:
        ctx.chat[option] = value
    elif option in BOT_OPTIONS:
        ctx.bot_settings[option] = value
    else:
        options = ", ".join(CHAT_OPTIONS + BOT_OPTIONS)
        await ctx.reply(m, f"Unknown option. Available: {options}")
        return
    await ctx.reply(m, f"✅ {option} {'enabled' if value else 'disabled'}")
