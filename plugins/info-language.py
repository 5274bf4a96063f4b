"""Show or change the language the bot answers in.

``language <code>`` sets it for the sender. In a group, admins can use
``language group <code>`` to set the chat's default.
"""

command = ["language", "lingua"]
tags = ["info"]
help = ["language", "language <code>", "language group <code>"]


async def handler(m, ctx):
    t = ctx.translator
    available = ", ".join(t.languages)
    if not ctx.args:
        await ctx.reply(m, ctx.t("language.current", language=ctx.language, languages=available))
        return

    record = ctx.user
    code = ctx.args[0]
    if code.lower() == "group" and m.is_group and ctx.is_admin and len(ctx.args) > 1:
        record = ctx.chat
        code = ctx.args[1]
    if not t.set_language(record, code):
        await ctx.reply(m, ctx.t("language.unknown", languages=available))
        return
    lang = record["language"]
    await ctx.reply(m, t.text("language.set", lang, language=lang))
