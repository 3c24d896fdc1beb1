"""
repositorio.py

Camada de acesso a dados (Repository) para a tabela room_measurements.

Objetivos:
- Isolar a lógica de persistência (upsert, transação, tratamento de erro).
- Evitar espalhar 'criar_sessao()' por todo o código.
- Oferecer a mesma interface do InfluxStore (write_points/close), para
  que o pipeline não dependa do destino configurado.
"""

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from room_sensor_bridge.core.errors import StoreWriteError
from room_sensor_bridge.core.schemas import RoomPoint
from room_sensor_bridge.database.modelagem_banco import criar_sessao, RoomMeasurement
from room_sensor_bridge.utils.logger import get_logger

logger = get_logger(__name__)


class PontoRepositorio:
    """
    Store SQL de pontos por cômodo.

    A escrita é idempotente por (measurement, room, timestamp_ms): o
    relay não deduplica mensagens reentregues pelo broker, então o
    store precisa tolerar o mesmo ponto mais de uma vez.
    """

    def write_points(self, pontos: Iterable[RoomPoint]) -> int:
        """
        Grava uma coleção de pontos em uma única transação.

        Retorna:
            Quantidade de pontos gravados (inseridos ou atualizados).

        Comportamento:
            - Abre uma nova sessão.
            - Atualiza a linha existente ou insere uma nova.
            - Faz commit se tudo der certo.
            - Em caso de erro, faz rollback e levanta StoreWriteError.
        """
        pontos = list(pontos)
        if not pontos:
            return 0

        sessao = criar_sessao()
        try:
            for ponto in pontos:
                existente = sessao.execute(
                    select(RoomMeasurement).where(
                        RoomMeasurement.measurement == ponto.measurement,
                        RoomMeasurement.room == ponto.room,
                        RoomMeasurement.timestamp_ms == ponto.timestamp_ms,
                    )
                ).scalar_one_or_none()

                if existente is None:
                    sessao.add(
                        RoomMeasurement(
                            measurement=ponto.measurement,
                            room=ponto.room,
                            timestamp_ms=ponto.timestamp_ms,
                            temperature=ponto.temperature,
                            humidity=ponto.humidity,
                        )
                    )
                else:
                    existente.temperature = ponto.temperature
                    existente.humidity = ponto.humidity

            sessao.commit()
            return len(pontos)
        except SQLAlchemyError as exc:
            sessao.rollback()
            logger.error("Erro ao gravar pontos no banco: %s", exc)
            raise StoreWriteError(f"Erro ao gravar pontos no banco: {exc}") from exc
        finally:
            sessao.close()

    def close(self) -> None:
        # Cada escrita abre e fecha a própria sessão.
        pass
