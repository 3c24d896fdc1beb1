"""
conftest.py

Configuração de testes para o projeto room-sensor-bridge.

Aqui:
- Criamos um banco SQLite em memória para os testes do store SQL.
- Definimos clientes MQTT falsos, que simulam o broker de forma
  determinística (CONNACK, mensagens, quedas, reconexões).
- Definimos um store falso que registra os pontos recebidos.
"""

from collections import deque
from types import SimpleNamespace

import pytest
from paho.mqtt import client as mqtt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from room_sensor_bridge.config.settings import Settings
from room_sensor_bridge.database import modelagem_banco as db

# Itens especiais da fila de entrada do FakeRelayClient
EMPTY = object()  # leitura sem mensagem, conexão continua ativa
DROP = object()  # queda do transporte


@pytest.fixture(autouse=True)
def setup_test_db():
    """
    Cria um engine SQLite em memória, substitui o engine e o
    SessionLocal do módulo modelagem_banco e cria as tabelas.
    Cada teste recebe um banco limpo.
    """
    engine = create_engine("sqlite:///:memory:", echo=False, future=True)

    db.engine = engine
    db.SessionLocal = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
    )

    db.Base.metadata.create_all(engine)

    yield

    engine.dispose()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        RECONNECT_DELAY_SECONDS=5.0,
        MQTT_CONNECT_TIMEOUT_SECONDS=1.0,
        INFLUXDB_TOKEN="token",
        INFLUXDB_ORG="home",
        INFLUXDB_BUCKET="sensors",
    )


def make_message(payload, mid=1, qos=1, topic="home/sensors"):
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    message = mqtt.MQTTMessage(mid=mid, topic=topic.encode("utf-8"))
    message.payload = payload
    message.qos = qos
    return message


class FakeReasonCode:
    def __init__(self, name="Success", failure=False):
        self.name = name
        self.is_failure = failure

    def __str__(self):
        return self.name


class FakeRelayClient:
    """
    Substituto do paho.mqtt.client.Client usado pela BrokerSession.

    A própria instância serve de client_factory. O CONNACK e o SUBACK
    são entregues na chamada seguinte a loop(), como no paho sem thread
    de rede.

    Cada loop() consome um item de `inbound`: uma MQTTMessage, EMPTY
    ou DROP. Com a fila vazia, o broker "cai" (como DROP), o que
    garante que os laços dos testes sempre terminem.
    """

    def __init__(self, session_present=(False,), reconnect_results=(), inbound=()):
        self.on_connect = None
        self.on_disconnect = None
        self.on_message = None
        self.on_subscribe = None

        self.factory_kwargs = {}
        self.will = None
        self.connect_calls = []
        self.connect_error = None
        self.refuse_connack = False
        self.reconnect_calls = 0
        self.subscriptions = []
        self.subscribe_rc = mqtt.MQTT_ERR_SUCCESS
        # rc de cada chamada a subscribe(); vazia usa subscribe_rc
        self.subscribe_results = []
        self.subscribe_calls = 0
        # reason code de cada SUBACK: None concede, texto recusa
        self.suback_results = []
        self.acks = []
        self.disconnect_calls = 0
        self.disconnect_error = None

        self.session_present = list(session_present)
        self.reconnect_results = list(reconnect_results)
        self.inbound = deque(inbound)
        self.connected = False
        self._pending_connack = False
        self._pending_subacks = deque()

    def __call__(self, **kwargs):
        self.factory_kwargs = kwargs
        return self

    # ----- API do paho usada pela sessão ------------------------------

    def will_set(self, topic, payload=None, qos=0, retain=False, properties=None):
        self.will = {"topic": topic, "payload": payload, "qos": qos, "retain": retain}

    def connect(self, host, port=1883, keepalive=60, clean_start=None, properties=None, **kwargs):
        self.connect_calls.append(
            {
                "host": host,
                "port": port,
                "keepalive": keepalive,
                "clean_start": clean_start,
                "properties": properties,
            }
        )
        if self.connect_error is not None:
            raise self.connect_error
        self._pending_connack = True

    def reconnect(self):
        self.reconnect_calls += 1
        ok = self.reconnect_results.pop(0) if self.reconnect_results else False
        if not ok:
            raise ConnectionRefusedError("broker fora do ar")
        self._pending_connack = True

    def loop(self, timeout=1.0):
        if self._pending_connack:
            self._pending_connack = False
            flags = SimpleNamespace(session_present=False)
            if self.refuse_connack:
                self.on_connect(self, None, flags, FakeReasonCode("Not authorized", failure=True), None)
                return mqtt.MQTT_ERR_SUCCESS
            self.connected = True
            flags.session_present = self._next_session_present()
            self.on_connect(self, None, flags, FakeReasonCode(), None)
            return mqtt.MQTT_ERR_SUCCESS

        if not self.connected:
            return mqtt.MQTT_ERR_NO_CONN

        if self._pending_subacks:
            mid = self._pending_subacks.popleft()
            recusa = self.suback_results.pop(0) if self.suback_results else None
            if recusa is None:
                reason = FakeReasonCode("Granted QoS 1")
            else:
                reason = FakeReasonCode(recusa, failure=True)
            self.on_subscribe(self, None, mid, [reason], None)
            return mqtt.MQTT_ERR_SUCCESS

        item = self.inbound.popleft() if self.inbound else DROP

        if item is EMPTY:
            return mqtt.MQTT_ERR_SUCCESS

        if item is DROP:
            self.connected = False
            self.on_disconnect(
                self,
                None,
                SimpleNamespace(is_disconnect_packet_from_server=False),
                FakeReasonCode("Unspecified error", failure=True),
                None,
            )
            return mqtt.MQTT_ERR_CONN_LOST

        self.on_message(self, None, item)
        return mqtt.MQTT_ERR_SUCCESS

    def subscribe(self, topic, qos=0, options=None, properties=None):
        self.subscribe_calls += 1
        rc = self.subscribe_results.pop(0) if self.subscribe_results else self.subscribe_rc
        if rc != mqtt.MQTT_ERR_SUCCESS:
            return rc, None
        self.subscriptions.append({"topic": topic, "qos": qos, "properties": properties})
        mid = 100 + len(self.subscriptions)
        self._pending_subacks.append(mid)
        return mqtt.MQTT_ERR_SUCCESS, mid

    def ack(self, mid, qos):
        self.acks.append(mid)
        return mqtt.MQTT_ERR_SUCCESS

    def is_connected(self):
        return self.connected

    def disconnect(self, reasoncode=None, properties=None):
        self.disconnect_calls += 1
        self.connected = False
        if self.disconnect_error is not None:
            raise self.disconnect_error
        return mqtt.MQTT_ERR_SUCCESS

    # ----- internos ---------------------------------------------------

    def _next_session_present(self):
        if len(self.session_present) > 1:
            return self.session_present.pop(0)
        return self.session_present[0]


class FakeStore:
    """
    Store falso: registra os pontos e, opcionalmente, levanta as
    exceções de `failures` nas primeiras escritas.
    """

    def __init__(self, failures=(), on_write=None):
        self.points = []
        self.failures = list(failures)
        self.on_write = on_write
        self.closed = False

    def write_points(self, points):
        points = list(points)
        if self.on_write is not None:
            self.on_write(points)
        if self.failures:
            falha = self.failures.pop(0)
            if falha is not None:
                raise falha
        self.points.extend(points)
        return len(points)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_client():
    return FakeRelayClient()


@pytest.fixture
def fake_store():
    return FakeStore()
