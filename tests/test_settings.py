import pytest
from pydantic import ValidationError

from room_sensor_bridge.config.settings import Settings


def test_valores_padrao():
    s = Settings(_env_file=None)

    assert s.MQTT_TOPIC == "home/sensors"
    assert s.MQTT_CLIENT_ID == "sensor-aggregator"
    assert s.MQTT_LWT_TOPIC == "lwt"
    assert s.MQTT_SUBSCRIPTION_ID == 1
    assert s.RECONNECT_MAX_ATTEMPTS == 12
    assert s.RECONNECT_DELAY_SECONDS == 5.0
    assert s.DECODE_ERRORS_FATAL is False
    assert s.STORE_WRITE_MAX_ATTEMPTS == 3
    assert s.STORE_WRITE_BACKOFF_SECONDS == 0.5


def test_variaveis_de_ambiente(monkeypatch):
    monkeypatch.setenv("MQTT_BROKER_HOST", "broker.local")
    monkeypatch.setenv("SAMPLE_INTERVAL_SECONDS", "10")
    monkeypatch.setenv("STORE_BACKEND", "SQL")

    s = Settings(_env_file=None)

    assert s.MQTT_BROKER_HOST == "broker.local"
    assert s.SAMPLE_INTERVAL_SECONDS == 10.0
    assert s.STORE_BACKEND == "sql"


def test_log_level_normalizado():
    assert Settings(_env_file=None, LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"
    assert Settings(_env_file=None, LOG_LEVEL="verbose").LOG_LEVEL == "INFO"


@pytest.mark.parametrize(
    "campo, valor",
    [
        ("STORE_BACKEND", "mongo"),
        ("SENSOR_KIND", "bme280"),
        ("RECONNECT_MAX_ATTEMPTS", 0),
        ("MQTT_QOS", 3),
        ("STORE_WRITE_MAX_ATTEMPTS", 0),
    ],
)
def test_valores_invalidos(campo, valor):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{campo: valor})


def test_configuracao_imutavel():
    s = Settings(_env_file=None)

    with pytest.raises(ValidationError):
        s.MQTT_TOPIC = "outro/topico"
