import sys
import logging
import asyncio

import discord

from config import Config, ConfigError, DEFAULT_COOKIES_FILE
from downloader import DownloadFailed, find_url, is_valid_url, download_url, download_cookies_from_url

logger = logging.getLogger(__name__)

# Discord rejects messages longer than this
MAX_MESSAGE_LENGTH = 2000


def resolve_log_level(level: str) -> int:
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: str = "INFO"):
    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        level=resolve_log_level(level)
    )
    logging.getLogger("discord").setLevel(logging.WARNING)


def truncate(text: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[:limit - 3] + "..."


class DiscordDownloaderBot:
    def __init__(self, config: Config):
        self.config = config
        self.active_downloads = set()

    async def load_cookies_on_startup(self):
        """Fetch cookies from cookie_url before connecting"""
        if not self.config.cookie_url:
            return
        path = self.config.cookies_path or DEFAULT_COOKIES_FILE
        if await download_cookies_from_url(self.config.cookie_url, path):
            self.config.cookies_path = path
            logger.info("Successfully loaded cookies from COOKIE_URL on startup")
        else:
            logger.warning("Failed to load cookies from COOKIE_URL on startup")

    async def say(self, channel, text: str) -> bool:
        try:
            await channel.send(truncate(text))
            return True
        except discord.HTTPException as e:
            logger.error(f"Failed to send message to channel {channel.id}: {e}")
            return False

    async def handle_message(self, message):
        """Pick a link out of a message and download it"""
        if message.author.bot:
            return
        if message.guild is not None and not self.config.is_allowed_guild(message.guild.id):
            return
        if self.config.channel_id is not None and message.channel.id != self.config.channel_id:
            return

        url = find_url(message.content)
        if url is None or not is_valid_url(url):
            await self.say(message.channel, "Invalid URL.")
            return

        try:
            await message.channel.send("OK! I will process that.")
        except discord.HTTPException as e:
            logger.error(f"Failed to send acknowledgment: {e}")

        task = asyncio.create_task(self.process_download(message.channel, url))
        self.active_downloads.add(task)
        task.add_done_callback(self.active_downloads.discard)

    async def process_download(self, channel, url: str):
        try:
            await download_url(url, self.config.output_dir, self.config.cookies_path)
        except DownloadFailed as e:
            logger.error(f"Download error for {url}: {e}")
            await self.say(channel, f"Failed to download {url}: {e}")
            return
        except Exception as e:
            logger.exception(f"Unexpected error downloading {url}")
            await self.say(channel, f"Failed to download {url}: {e}")
            return
        await self.say(channel, f"Downloaded: <{url}>")

    async def leave_if_unauthorized(self, guild):
        if self.config.is_allowed_guild(guild.id):
            return
        logger.info(f"Leaving unauthorized guild: {guild.id}")
        try:
            await guild.leave()
        except discord.HTTPException as e:
            logger.error(f"Failed to leave guild {guild.id}: {e}")

    async def on_ready(self, client):
        logger.info(f"Connected as {client.user.name}")
        if self.config.guild_ids is None:
            return
        for guild in list(client.guilds):
            await self.leave_if_unauthorized(guild)

    async def on_guild_join(self, guild):
        await self.leave_if_unauthorized(guild)


class DownloaderClient(discord.Client):
    """Forwards gateway events to a DiscordDownloaderBot"""

    def __init__(self, bot: DiscordDownloaderBot):
        intents = discord.Intents.none()
        intents.guilds = True
        intents.guild_messages = True
        intents.message_content = True
        # Guild messages only, direct messages are never delivered
        super().__init__(intents=intents)
        self.bot = bot

    async def setup_hook(self):
        await self.bot.load_cookies_on_startup()

    async def on_ready(self):
        await self.bot.on_ready(self)

    async def on_guild_join(self, guild):
        await self.bot.on_guild_join(guild)

    async def on_message(self, message):
        await self.bot.handle_message(message)


def main():
    """Start the bot"""
    try:
        config = Config.load()
    except ConfigError as e:
        setup_logging()
        logger.error(f"Failed to load configuration from file or environment: {e}")
        sys.exit(1)
    setup_logging(config.log_level)

    bot = DiscordDownloaderBot(config)
    client = DownloaderClient(bot)

    logger.info("Bot starting...")
    logger.info(f"Output directory: {config.output_dir}")
    logger.info(f"COOKIE_URL configured: {bool(config.cookie_url)}")
    client.run(config.discord_token, log_handler=None)


if __name__ == "__main__":
    main()
