#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
MIoT specification support.

Newer devices describe themselves with a MIoT specification document that lists
services, each with numbered properties and actions. MiotSpecFetcher retrieves
that document for a model from miot-spec.org; MiotDevice builds lookup tables
from it so that properties and actions can be addressed by name:

    name -> (siid, piid)   for properties
    name -> (siid, aiid)   for actions

and sent through the ordinary miIO "get_properties", "set_properties" and "action"
commands. Every property and action is registered under "<service>.<name>", and
also under its bare "<name>" unless an earlier service already claimed it.
"""

from __future__ import annotations

import asyncio

import requests

from .internal_types import *
from .pkg_logging import logger
from .constants import MIIO_PORT, DEFAULT_TIMEOUT
from .exceptions import MiotError, MiotSpecUnavailableError, MiotUnknownNameError, MiotPropertyError
from .device import MiioDevice

SPEC_BASE_URL = 'https://miot-spec.org/miot-spec-v2/instance'
"""The instance endpoint of the public MIoT specification service."""

DEFAULT_FETCH_TIMEOUT = 10.0
"""The default time (in seconds) to wait for the specification service."""

PropertyValue = Union[str, int, float, bool, None]
"""The value types that can be sent to or received from a MIoT property."""

MiotSpec = JsonableDict
"""A parsed MIoT specification document: {"type", "description", "services": [...]}"""

def miot_short_name(urn: str) -> str:
    """Returns the name component of a MIoT type URN.

    "urn:miot-spec-v2:property:brightness:0000000D:yeelink-bslamp2:1" -> "brightness"
    """
    parts = urn.split(':')
    if len(parts) >= 4 and parts[3] != '':
        return parts[3]
    return parts[-1] if parts[-1] != '' else urn

class MiotPropertyRef(NamedTuple):
    siid: int
    piid: int

class MiotActionRef(NamedTuple):
    siid: int
    aiid: int

class MiotPropertyInfo(NamedTuple):
    name: str
    description: str
    format: str
    access: List[str]
    unit: Optional[str] = None
    value_range: Optional[List[Jsonable]] = None
    value_list: Optional[List[Jsonable]] = None

class MiotActionInfo(NamedTuple):
    name: str
    description: str
    inputs: List[int]
    outputs: List[int]

class DeviceCapability(NamedTuple):
    """One property or one action of a device, as listed in its MIoT specification."""
    service: str
    service_description: str
    property: Optional[MiotPropertyInfo] = None
    action: Optional[MiotActionInfo] = None

    def to_jsonable(self) -> JsonableDict:
        result: JsonableDict = {
            "service": self.service,
            "service_description": self.service_description,
          }
        if self.property is not None:
            result["property"] = cast(JsonableDict, self.property._asdict())
        if self.action is not None:
            result["action"] = cast(JsonableDict, self.action._asdict())
        return result

class MiotSpecFetcher:
    """Fetches and caches MIoT device specifications from miot-spec.org."""

    _spec_cache: Dict[str, MiotSpec] = {}

    @classmethod
    def spec_url(cls, model: str) -> str:
        return f"{SPEC_BASE_URL}?type=urn:miot-spec-v2:device:{model}:1"

    @classmethod
    async def fetch_spec(cls, model: str, timeout: float=DEFAULT_FETCH_TIMEOUT) -> Optional[MiotSpec]:
        """Fetch the MIoT specification for a device model, e.g. "yeelink.light.bslamp2".

        Returns None if the specification cannot be fetched or parsed.
        """
        cached = cls._spec_cache.get(model)
        if cached is not None:
            return cached
        loop = asyncio.get_running_loop()
        try:
            spec = await loop.run_in_executor(None, cls._http_get_spec, cls.spec_url(model), timeout)
        except (requests.RequestException, ValueError) as e:
            logger.info(f"Unable to fetch MIoT spec for model {model}: {e}")
            return None
        cls._spec_cache[model] = spec
        return spec

    @staticmethod
    def _http_get_spec(url: str, timeout: float) -> MiotSpec:
        logger.debug(f"Fetching MIoT spec from {url}")
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        spec = response.json()
        if not isinstance(spec, dict) or not isinstance(spec.get('services'), list):
            raise ValueError(f"Response from {url} is not a MIoT specification")
        return spec

    @classmethod
    def clear_cache(cls) -> None:
        cls._spec_cache.clear()

    @staticmethod
    def extract_capabilities(spec: MiotSpec) -> List[DeviceCapability]:
        """Returns one DeviceCapability for every property and every action in the specification."""
        capabilities: List[DeviceCapability] = []
        for service in _list_of_dicts(spec.get('services')):
            service_name = miot_short_name(str(service.get('type', '')))
            service_description = str(service.get('description', ''))
            for prop in _list_of_dicts(service.get('properties')):
                value_range = prop.get('value-range')
                value_list = prop.get('value-list')
                unit = prop.get('unit')
                capabilities.append(DeviceCapability(
                    service=service_name,
                    service_description=service_description,
                    property=MiotPropertyInfo(
                        name=miot_short_name(str(prop.get('type', ''))),
                        description=str(prop.get('description', '')),
                        format=str(prop.get('format', '')),
                        access=[ str(x) for x in cast(List[Any], prop.get('access') or []) ],
                        unit=None if unit is None else str(unit),
                        value_range=value_range if isinstance(value_range, list) else None,
                        value_list=value_list if isinstance(value_list, list) else None,
                      ),
                  ))
            for action in _list_of_dicts(service.get('actions')):
                capabilities.append(DeviceCapability(
                    service=service_name,
                    service_description=service_description,
                    action=MiotActionInfo(
                        name=miot_short_name(str(action.get('type', ''))),
                        description=str(action.get('description', '')),
                        inputs=list(cast(List[int], action.get('in') or [])),
                        outputs=list(cast(List[int], action.get('out') or [])),
                      ),
                  ))
        return capabilities

def _list_of_dicts(value: Jsonable) -> List[JsonableDict]:
    if not isinstance(value, list):
        return []
    return [ x for x in value if isinstance(x, dict) ]

class MiotDevice(MiioDevice):
    """
    A MiioDevice that addresses MIoT properties and actions by name.

    Usage:
        async with MiotDevice('192.168.1.100', token_hex, model='yeelink.light.bslamp2') as device:
            await device.connect()
            await device.initialize()
            await device.set_property('on', True)
            brightness = await device.get_property('brightness')
    """

    _spec: Optional[MiotSpec] = None
    _capabilities: List[DeviceCapability]
    _property_map: Dict[str, MiotPropertyRef]
    _action_map: Dict[str, MiotActionRef]

    def __init__(
            self,
            address: str,
            token: Union[bytes, str],
            model: Optional[str]=None,
            timeout: float=DEFAULT_TIMEOUT,
            port: int=MIIO_PORT,
          ) -> None:
        if not model:
            raise MiotError("MiotDevice requires a model identifier")
        super().__init__(address, token, model=model, timeout=timeout, port=port)
        self._capabilities = []
        self._property_map = {}
        self._action_map = {}

    @property
    def is_initialized(self) -> bool:
        return self._spec is not None

    @property
    def spec(self) -> Optional[MiotSpec]:
        """The MIoT specification, or None if not initialized."""
        return self._spec

    @property
    def property_names(self) -> List[str]:
        return list(self._property_map.keys())

    @property
    def action_names(self) -> List[str]:
        return list(self._action_map.keys())

    def get_capabilities(self) -> List[DeviceCapability]:
        return list(self._capabilities)

    async def initialize(self) -> None:
        """Fetch the device's MIoT specification and build the property and action tables.

        Raises MiotError if already initialized, and MiotSpecUnavailableError if the
        specification cannot be fetched.
        """
        if self.is_initialized:
            raise MiotError("Device is already initialized. Call initialize() only once.")
        assert self.model is not None
        spec = await MiotSpecFetcher.fetch_spec(self.model)
        if spec is None:
            raise MiotSpecUnavailableError(f"Could not fetch MIoT spec for model: {self.model}")
        self._apply_spec(spec)

    def initialize_with_spec(self, spec: MiotSpec) -> None:
        """Initialize with a specification that was already fetched or hand-written.

        Initializing again with the same specification object is a no-op; with a different one
        it raises MiotError.
        """
        if self.is_initialized:
            if self._spec is spec:
                return
            raise MiotError("Device is already initialized with a different spec. Cannot re-initialize.")
        self._apply_spec(spec)

    def _apply_spec(self, spec: MiotSpec) -> None:
        property_map: Dict[str, MiotPropertyRef] = {}
        action_map: Dict[str, MiotActionRef] = {}
        for service in _list_of_dicts(spec.get('services')):
            siid = service.get('iid')
            if not isinstance(siid, int):
                continue
            service_name = miot_short_name(str(service.get('type', '')))
            for prop in _list_of_dicts(service.get('properties')):
                piid = prop.get('iid')
                if isinstance(piid, int):
                    name = miot_short_name(str(prop.get('type', '')))
                    ref = MiotPropertyRef(siid, piid)
                    property_map[f"{service_name}.{name}"] = ref
                    property_map.setdefault(name, ref)
            for action in _list_of_dicts(service.get('actions')):
                aiid = action.get('iid')
                if isinstance(aiid, int):
                    name = miot_short_name(str(action.get('type', '')))
                    aref = MiotActionRef(siid, aiid)
                    action_map[f"{service_name}.{name}"] = aref
                    action_map.setdefault(name, aref)
        self._spec = spec
        self._capabilities = MiotSpecFetcher.extract_capabilities(spec)
        self._property_map = property_map
        self._action_map = action_map
        logger.debug(f"{self} initialized with {len(property_map)} property names and {len(action_map)} action names")

    def property_ref(self, name: str) -> MiotPropertyRef:
        ref = self._property_map.get(name)
        if ref is None:
            raise MiotUnknownNameError(f"Unknown property: {name}")
        return ref

    def action_ref(self, name: str) -> MiotActionRef:
        ref = self._action_map.get(name)
        if ref is None:
            raise MiotUnknownNameError(f"Unknown action: {name}")
        return ref

    async def get_property(self, name: str) -> PropertyValue:
        """Read a property value from the device by name."""
        ref = self.property_ref(name)
        result = await self.call('get_properties', [ { "siid": ref.siid, "piid": ref.piid } ])
        code = _first_result_code(result)
        if code != 0:
            raise MiotPropertyError(f"Failed to get property {name}: code {code}", name, code)
        assert isinstance(result, list)
        return cast(PropertyValue, result[0].get('value'))

    async def set_property(self, name: str, value: PropertyValue) -> None:
        """Write a property value on the device by name."""
        ref = self.property_ref(name)
        result = await self.call('set_properties', [ { "siid": ref.siid, "piid": ref.piid, "value": value } ])
        code = _first_result_code(result)
        if code != 0:
            raise MiotPropertyError(f"Failed to set property {name}: code {code}", name, code)

    async def call_action(self, name: str, params: Optional[Sequence[PropertyValue]]=None) -> Jsonable:
        """Invoke an action on the device by name and return the raw result."""
        ref = self.action_ref(name)
        return await self.call('action', [ { "siid": ref.siid, "aiid": ref.aiid, "in": list(params or []) } ])

def _first_result_code(result: Jsonable) -> Optional[int]:
    if isinstance(result, list) and len(result) > 0 and isinstance(result[0], dict):
        code = result[0].get('code')
        if isinstance(code, int):
            return code
    return None
