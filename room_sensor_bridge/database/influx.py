"""
influx.py

Store de séries temporais no InfluxDB (destino padrão do relay).

Responsável por:
- Criar o cliente e a write_api síncrona: cada escrita é aguardada
  antes da próxima mensagem ser consumida.
- Converter RoomPoint em Point (precisão de milissegundos).
- Classificar falhas: transitórias (StoreWriteError) ou que tornam o
  store inutilizável (StoreUnavailableError).
"""

from typing import Iterable, Protocol

from influxdb_client import InfluxDBClient
from influxdb_client.client.write_api import SYNCHRONOUS
from influxdb_client.domain.write_precision import WritePrecision
from influxdb_client.rest import ApiException

from room_sensor_bridge.config.settings import Settings
from room_sensor_bridge.core.errors import (
    ConfigurationError,
    StoreUnavailableError,
    StoreWriteError,
)
from room_sensor_bridge.core.schemas import RoomPoint
from room_sensor_bridge.utils.logger import get_logger

logger = get_logger(__name__)

# Credenciais inválidas, sem permissão ou bucket inexistente:
# repetir a escrita não resolve.
STATUS_INUTILIZAVEL = {401, 403, 404}


class StoreSink(Protocol):
    def write_points(self, pontos: Iterable[RoomPoint]) -> int: ...

    def close(self) -> None: ...


class InfluxStore:
    def __init__(self, client: InfluxDBClient, bucket: str, org: str):
        self.client = client
        self.bucket = bucket
        self.org = org
        self.write_api = client.write_api(write_options=SYNCHRONOUS)

    @classmethod
    def from_settings(cls, settings: Settings) -> "InfluxStore":
        faltando = [
            nome
            for nome in ("INFLUXDB_TOKEN", "INFLUXDB_ORG", "INFLUXDB_BUCKET")
            if not getattr(settings, nome)
        ]
        if faltando:
            raise ConfigurationError(
                f"Configuração do InfluxDB incompleta: {', '.join(faltando)}"
            )

        client = InfluxDBClient(
            url=settings.INFLUXDB_URL,
            token=settings.INFLUXDB_TOKEN,
            org=settings.INFLUXDB_ORG,
        )
        return cls(client, bucket=settings.INFLUXDB_BUCKET, org=settings.INFLUXDB_ORG)

    def write_points(self, pontos: Iterable[RoomPoint]) -> int:
        records = [p.to_influx() for p in pontos]
        if not records:
            return 0

        try:
            self.write_api.write(
                bucket=self.bucket,
                org=self.org,
                record=records,
                write_precision=WritePrecision.MS,
            )
        except ApiException as exc:
            if exc.status in STATUS_INUTILIZAVEL:
                raise StoreUnavailableError(
                    f"InfluxDB recusou a escrita (HTTP {exc.status}): {exc.reason}"
                ) from exc
            raise StoreWriteError(
                f"Erro de escrita no InfluxDB (HTTP {exc.status}): {exc.reason}"
            ) from exc
        except Exception as exc:
            # Erros de rede (urllib3) e timeouts do cliente
            raise StoreWriteError(f"Erro ao enviar pontos ao InfluxDB: {exc}") from exc

        return len(records)

    def close(self) -> None:
        try:
            self.write_api.close()
        except Exception as exc:
            logger.warning("Erro ao fechar write_api do InfluxDB: %s", exc)

        try:
            self.client.close()
        except Exception as exc:
            logger.warning("Erro ao fechar cliente InfluxDB: %s", exc)


def criar_store(settings: Settings) -> StoreSink:
    """
    Cria o store configurado em STORE_BACKEND.

    - influx: InfluxStore (padrão)
    - sql:    PontoRepositorio, após criar as tabelas se necessário
    """
    if settings.STORE_BACKEND == "sql":
        from room_sensor_bridge.database.modelagem_banco import inicializar_banco
        from room_sensor_bridge.database.repositorio import PontoRepositorio

        inicializar_banco()
        logger.info("Store SQL em uso: %s", settings.DB_URL)
        return PontoRepositorio()

    store = InfluxStore.from_settings(settings)
    logger.info(
        "Store InfluxDB em uso: %s (org=%s, bucket=%s)",
        settings.INFLUXDB_URL,
        settings.INFLUXDB_ORG,
        settings.INFLUXDB_BUCKET,
    )
    return store
