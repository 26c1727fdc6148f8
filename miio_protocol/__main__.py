#!/usr/bin/env python3

# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

from __future__ import annotations

import os
import sys
import argparse
import json
import asyncio
import logging

from miio_protocol.internal_types import *

from miio_protocol import (
    __version__ as pkg_version,
    MiioDevice,
    MiioTransport,
    discover,
    discover_all_interfaces,
    lookup_device_hostname,
    token_from_hex,
    token_to_hex,
    get_stored_token,
    store_token,
    delete_stored_token,
    MIIO_PORT,
    MIIO_BROADCAST_ADDRESS,
    DEFAULT_TIMEOUT,
    DEFAULT_DISCOVERY_TIMEOUT,
  )
from miio_protocol.constants import EMPTY_TOKEN, TOKEN_ENV_VAR

class CmdExitError(RuntimeError):
    exit_code: int

    def __init__(self, exit_code: int, msg: Optional[str]=None):
        if msg is None:
            msg = f"Command exited with return code {exit_code}"
        super().__init__(msg)
        self.exit_code = exit_code

class ArgparseExitError(CmdExitError):
    pass

class NoExitArgumentParser(argparse.ArgumentParser):
    def exit(self, status=0, message=None):
        if message:
            self._print_message(message, sys.stderr)
        raise ArgparseExitError(status, message)

def parse_cli_param(value: str) -> Jsonable:
    """Parses a command parameter as JSON; anything that is not valid JSON is passed as a string.

    "true" -> True, "50" -> 50, '{"a": 1}' -> {"a": 1}, "on" -> "on"
    """
    try:
        return cast(Jsonable, json.loads(value))
    except ValueError:
        return value

def print_json(data: Jsonable) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))
    sys.stdout.flush()

class CommandHandler:
    _argv: Optional[Sequence[str]]
    _parser: argparse.ArgumentParser
    _args: argparse.Namespace
    _provide_traceback: bool = True

    def __init__(self, argv: Optional[Sequence[str]]=None):
        self._argv = argv

    async def cmd_bare(self) -> int:
        print("A command is required", file=sys.stderr)
        return 1

    async def resolve_token(self, address: str, required: bool=True) -> Optional[bytes]:
        """Returns the device token from --token, the environment, or the keyring, in that order."""
        token_hex: Optional[str] = getattr(self._args, 'token', None)
        if token_hex is not None:
            return token_from_hex(token_hex)
        token_hex = os.environ.get(TOKEN_ENV_VAR)
        if token_hex is not None and token_hex != '':
            return token_from_hex(token_hex)
        loop = asyncio.get_running_loop()
        token = await loop.run_in_executor(None, get_stored_token, address)
        if token is None and required:
            raise CmdExitError(1, f"No token for device {address}; use --token, set {TOKEN_ENV_VAR}, or run 'miio token set'")
        return token

    async def cmd_discover(self) -> int:
        wait_time: float = self._args.wait_time
        port: int = self._args.port
        include_token: bool = self._args.include_token
        if self._args.all_interfaces:
            devices = await discover_all_interfaces(port=port, timeout=wait_time, include_token=include_token)
        else:
            devices = await discover(
                address=self._args.address, port=port, timeout=wait_time, include_token=include_token)
        print_json([ device.to_jsonable() for device in devices ])
        return 0

    async def cmd_handshake(self) -> int:
        address: str = self._args.address
        token = await self.resolve_token(address, required=False)
        async with MiioTransport(
                address,
                EMPTY_TOKEN if token is None else token,
                timeout=self._args.timeout,
                port=self._args.port
              ) as transport:
            device_id, stamp = await transport.handshake()
        print_json({ "address": address, "device_id": device_id, "stamp": stamp })
        return 0

    async def cmd_call(self) -> int:
        address: str = self._args.address
        method: str = self._args.method
        params: List[Jsonable] = [ parse_cli_param(x) for x in self._args.params ]
        token = await self.resolve_token(address)
        assert token is not None
        async with MiioDevice(address, token, timeout=self._args.timeout, port=self._args.port) as device:
            result = await device.call(method, params)
        print_json(result)
        return 0

    async def cmd_get_props(self) -> int:
        address: str = self._args.address
        token = await self.resolve_token(address)
        assert token is not None
        async with MiioDevice(address, token, timeout=self._args.timeout, port=self._args.port) as device:
            result = await device.get_properties(self._args.props)
        print_json(result)
        return 0

    async def cmd_hostname(self) -> int:
        result = await lookup_device_hostname(self._args.address, port=self._args.port)
        print_json(result.to_jsonable())
        return 0 if result.error is None else 1

    async def cmd_token_set(self) -> int:
        token = token_from_hex(self._args.token_hex)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, store_token, self._args.address, token)
        return 0

    async def cmd_token_get(self) -> int:
        address: str = self._args.address
        loop = asyncio.get_running_loop()
        token = await loop.run_in_executor(None, get_stored_token, address)
        if token is None:
            raise CmdExitError(1, f"No token is stored for device {address}")
        print(token_to_hex(token))
        return 0

    async def cmd_token_delete(self) -> int:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, delete_stored_token, self._args.address)
        return 0

    async def cmd_version(self) -> int:
        print(pkg_version)
        return 0

    def _add_device_arguments(self, parser: argparse.ArgumentParser) -> None:
        parser.add_argument('address',
                            help='''The IP address of the device''')
        parser.add_argument('--token', default=None,
                            help=f'''The device token as 32 hex characters. Default: ${TOKEN_ENV_VAR}, then the keyring''')
        parser.add_argument('--port', type=int, default=MIIO_PORT,
                            help=f'''The UDP port of the device. Default: {MIIO_PORT}''')
        parser.add_argument('--timeout', type=float, default=DEFAULT_TIMEOUT,
                            help=f'''The time to wait for each response, in seconds. Default: {DEFAULT_TIMEOUT}''')

    async def arun(self) -> int:
        """Run the miio command-line tool with provided arguments

        Args:
            argv (Optional[Sequence[str]], optional):
                A list of commandline arguments (NOT including the program as argv[0]!),
                or None to use sys.argv[1:]. Defaults to None.

        Returns:
            int: The exit code that would be returned if this were run as a standalone command.
        """
        parser = NoExitArgumentParser(prog='miio', description="Discover and control Xiaomi miIO devices on the local network.")


        # ======================= Main command

        self._parser = parser
        parser.add_argument('--traceback', "--tb", action='store_true', default=False,
                            help='Display detailed exception information')
        parser.add_argument('--log-level', dest='log_level', default='warning',
                            choices=['debug', 'info', 'warning', 'error', 'critical'],
                            help='''The logging level to use. Default: warning''')
        parser.set_defaults(func=self.cmd_bare)

        subparsers = parser.add_subparsers(
                            title='Commands',
                            description='Valid commands',
                            help='Additional help available with "<command-name> -h"')


        # ======================= discover

        parser_discover = subparsers.add_parser('discover', description="Discover miIO devices on the local network")
        parser_discover.add_argument('--address', default=MIIO_BROADCAST_ADDRESS,
                            help=f'''The broadcast address to send the hello probe to. Default: {MIIO_BROADCAST_ADDRESS}''')
        parser_discover.add_argument('--port', type=int, default=MIIO_PORT,
                            help=f'''The UDP port to send the hello probe to. Default: {MIIO_PORT}''')
        parser_discover.add_argument('--wait-time', dest='wait_time', type=float, default=DEFAULT_DISCOVERY_TIMEOUT,
                            help=f'''The amount of time to wait for responses, in seconds. Default: {DEFAULT_DISCOVERY_TIMEOUT}''')
        parser_discover.add_argument('--include-token', dest='include_token', action='store_true', default=False,
                            help='Include the token field of each hello response in the output. Default: False')
        parser_discover.add_argument('--all-interfaces', dest='all_interfaces', action='store_true', default=False,
                            help='Probe the broadcast address of every local IPv4 interface instead of --address. Default: False')
        parser_discover.set_defaults(func=self.cmd_discover)

        # ======================= handshake

        parser_handshake = subparsers.add_parser('handshake', description="Perform the hello handshake with a device")
        self._add_device_arguments(parser_handshake)
        parser_handshake.set_defaults(func=self.cmd_handshake)

        # ======================= call

        parser_call = subparsers.add_parser('call', description="Send a raw miIO command to a device")
        self._add_device_arguments(parser_call)
        parser_call.add_argument('method',
                            help='''The command method, e.g. "set_power"''')
        parser_call.add_argument('params', nargs='*', default=[],
                            help='''Command parameters. Each is parsed as JSON, or passed as a string if it is not valid JSON.''')
        parser_call.set_defaults(func=self.cmd_call)

        # ======================= get-props

        parser_get_props = subparsers.add_parser('get-props', description="Query device properties with get_prop")
        self._add_device_arguments(parser_get_props)
        parser_get_props.add_argument('props', nargs='+',
                            help='''The property names to query''')
        parser_get_props.set_defaults(func=self.cmd_get_props)

        # ======================= hostname

        parser_hostname = subparsers.add_parser('hostname', description="Reverse-lookup the hostname of a device")
        parser_hostname.add_argument('address',
                            help='''The IP address of the device''')
        parser_hostname.add_argument('--port', type=int, default=MIIO_PORT,
                            help=f'''The port used for the lookup. Default: {MIIO_PORT}''')
        parser_hostname.set_defaults(func=self.cmd_hostname)

        # ======================= token

        parser_token = subparsers.add_parser('token', description="Manage device tokens stored in the system keyring")
        token_subparsers = parser_token.add_subparsers(
                            title='Token commands',
                            description='Valid token commands',
                            help='Additional help available with "token <command-name> -h"')

        parser_token_set = token_subparsers.add_parser('set', description="Store the token for a device")
        parser_token_set.add_argument('address',
                            help='''The IP address of the device''')
        parser_token_set.add_argument('token_hex', metavar='token',
                            help='''The device token as 32 hex characters''')
        parser_token_set.set_defaults(func=self.cmd_token_set)

        parser_token_get = token_subparsers.add_parser('get', description="Display the stored token for a device")
        parser_token_get.add_argument('address',
                            help='''The IP address of the device''')
        parser_token_get.set_defaults(func=self.cmd_token_get)

        parser_token_delete = token_subparsers.add_parser('delete', description="Delete the stored token for a device")
        parser_token_delete.add_argument('address',
                            help='''The IP address of the device''')
        parser_token_delete.set_defaults(func=self.cmd_token_delete)

        # ======================= version

        parser_version = subparsers.add_parser('version',
                                description='''Display version information.''')
        parser_version.set_defaults(func=self.cmd_version)

        # =========================================================

        try:
            args = parser.parse_args(self._argv)
        except ArgparseExitError as ex:
            return ex.exit_code
        traceback: bool = args.traceback
        self._provide_traceback = traceback

        try:
            logging.basicConfig(
                level=logging.getLevelName(args.log_level.upper()),
            )
            self._args = args
            func: Callable[[], Awaitable[int]] = args.func
            logging.debug(f"Running command {func.__name__}, tb = {traceback}")
            rc = await func()
            logging.debug(f"Command {func.__name__} returned {rc}")
        except Exception as ex:
            if isinstance(ex, CmdExitError):
                rc = ex.exit_code
            else:
                rc = 1
            if rc != 0:
                if traceback:
                    raise
            print(f"miio: error: {ex}", file=sys.stderr)
        except BaseException as ex:
            print(f"miio: Unhandled exception: {ex}", file=sys.stderr)
            raise

        return rc

    def run(self) -> int:
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            rc = loop.run_until_complete(self.arun())
        finally:
            loop.close()
        return rc

def run(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = CommandHandler(argv).run()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

async def arun(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = await CommandHandler(argv).arun()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

# allow running with "python3 -m", or as a standalone script
if __name__ == "__main__":
    sys.exit(run())
