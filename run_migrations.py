import logging
import sys
import argparse
import os
from alembic.config import Config
from alembic import command

ALEMBIC_INI = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'alembic.ini')


def run_migrations(upgrade=True, revision=None, sql=False) -> bool:
    """
    Применяет или откатывает миграции схемы розыгрышей.

    Args:
        upgrade (bool): True для применения миграций, False для отката
        revision (str): Версия миграции (по умолчанию 'head' для upgrade и '-1' для downgrade)
        sql (bool): Выводить SQL вместо выполнения миграций
    """
    if not os.path.exists(ALEMBIC_INI):
        logging.error(f"Файл alembic.ini не найден по пути: {ALEMBIC_INI}")
        return False

    alembic_cfg = Config(ALEMBIC_INI)
    try:
        if upgrade:
            target_revision = revision or "head"
            logging.info(f"Применение миграций до версии: {target_revision}")
            command.upgrade(alembic_cfg, target_revision, sql=sql)
        else:
            target_revision = revision or "-1"
            logging.info(f"Откат миграций до версии: {target_revision}")
            command.downgrade(alembic_cfg, target_revision, sql=sql)
    except Exception as e:
        logging.error(f"Ошибка при выполнении миграций: {e}")
        return False

    logging.info("Миграции выполнены")
    return True


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(description="Управление миграциями базы данных")
    parser.add_argument("--downgrade", action="store_true", help="Откатить миграции")
    parser.add_argument("--revision", help="Версия миграции (по умолчанию 'head' для upgrade и '-1' для downgrade)")
    parser.add_argument("--sql", action="store_true", help="Только вывести SQL без выполнения миграций")
    args = parser.parse_args()

    success = run_migrations(upgrade=not args.downgrade, revision=args.revision, sql=args.sql)
    sys.exit(0 if success else 1)
