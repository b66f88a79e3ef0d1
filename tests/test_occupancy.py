import asyncio

import discord

from core.occupancy import Occupancy, OccupancyChecker
from fakes import FakeClient, FakeGuild, member


def _check(client, guild_id=100, channel_id=200):
    return asyncio.run(OccupancyChecker(client).check(guild_id, channel_id))


def _is_empty(client, guild_id=100, channel_id=200):
    return asyncio.run(OccupancyChecker(client).is_empty(guild_id, channel_id))


def test_humans_make_channel_occupied():
    guild = FakeGuild()
    guild.add_channel(200, members=[member(10), member(11), member(12, bot=True)])

    assert _check(FakeClient(guild)) is Occupancy.OCCUPIED
    assert _is_empty(FakeClient(guild)) is False


def test_only_self_is_empty():
    guild = FakeGuild()
    guild.add_channel(200, members=[member(1)])

    assert _check(FakeClient(guild, user_id=1)) is Occupancy.EMPTY


def test_only_bots_is_empty():
    guild = FakeGuild()
    guild.add_channel(200, members=[member(1), member(50, bot=True)])

    assert _is_empty(FakeClient(guild)) is True


def test_unknown_guild_counts_as_empty():
    client = FakeClient()

    assert _check(client) is Occupancy.UNKNOWN
    assert _is_empty(client) is True


def test_unknown_channel_counts_as_empty():
    client = FakeClient(FakeGuild())

    assert _check(client) is Occupancy.UNKNOWN
    assert _is_empty(client) is True


def test_text_channel_counts_as_empty():
    guild = FakeGuild()
    guild.add_channel(200, members=[member(10)], channel_type=discord.ChannelType.text)

    assert _check(FakeClient(guild)) is Occupancy.UNKNOWN
    assert _is_empty(FakeClient(guild)) is True


def test_stage_channel_is_watched():
    guild = FakeGuild()
    guild.add_channel(200, members=[member(10)], channel_type=discord.ChannelType.stage_voice)

    assert _check(FakeClient(guild)) is Occupancy.OCCUPIED


def test_membership_is_read_fresh_every_call():
    guild = FakeGuild()
    channel = guild.add_channel(200, members=[member(10)])
    checker = OccupancyChecker(FakeClient(guild))

    async def scenario():
        first = await checker.is_empty(100, 200)
        channel.members.clear()
        second = await checker.is_empty(100, 200)
        return first, second

    assert asyncio.run(scenario()) == (False, True)
