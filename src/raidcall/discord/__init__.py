"""Discord bot integration for raidcall.

The bot runs in-process with FastAPI, sharing the same event loop. It posts
run and headcount panels, routes their buttons to the coordinator, and
hosts the progression pings.

Optional: if DISCORD_BOT_TOKEN is not set, the app runs without Discord.
"""
