"""
校园食堂数据库表初始化脚本

运行方式:
python -m canteen.scripts.init_canteen_tables [--seed]
"""

import argparse
import asyncio
import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from canteen.core import database
from canteen.core.database import Base, init_database, close_database
from canteen.models.database import StudentDB, MerchantDB, DishDB

logger = logging.getLogger(__name__)

DEMO_STUDENTS = [
    {"student_id": "2022001", "name": "张三", "sex": "男", "major": "计算机科学", "balance": Decimal("50.00"), "points": 0},
    {"student_id": "2022002", "name": "李四", "sex": "女", "major": "软件工程", "balance": Decimal("120.50"), "points": 35},
    {"student_id": "2022003", "name": "王五", "sex": "男", "major": "数学", "balance": Decimal("8.00"), "points": 0},
]

DEMO_MERCHANTS = [
    {"merchant_id": "01101", "name": "一食堂面食档", "location": "一食堂一楼", "manager": "陈师傅", "phone": "13800000001"},
    {"merchant_id": "02201", "name": "二食堂快餐档", "location": "二食堂二楼", "manager": "刘师傅", "phone": "13800000002"},
]

DEMO_DISHES = [
    {"dish_id": "D001", "name": "牛肉面", "price": Decimal("12.00"), "merchant_id": "01101"},
    {"dish_id": "D002", "name": "炸酱面", "price": Decimal("10.00"), "merchant_id": "01101"},
    {"dish_id": "D003", "name": "两荤一素", "price": Decimal("15.00"), "merchant_id": "02201"},
    {"dish_id": "D004", "name": "例汤", "price": Decimal("2.00"), "merchant_id": "02201"},
]


async def create_canteen_tables(engine: AsyncEngine) -> None:
    """创建所有数据表（已存在的表跳过）"""
    logger.info("开始创建食堂数据表...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("食堂数据表创建成功")


async def _insert_missing(conn: AsyncConnection, model, key: str, rows) -> int:
    """按主键检查，只插入不存在的行"""
    inserted = 0
    for row in rows:
        result = await conn.execute(
            select(getattr(model, key)).where(getattr(model, key) == row[key])
        )
        if result.first() is None:
            await conn.execute(model.__table__.insert().values(**row))
            inserted += 1
        else:
            logger.info(f"{model.__tablename__} 已存在: {row[key]}")
    return inserted


async def seed_demo_data(engine: AsyncEngine) -> int:
    """插入演示数据，返回新插入的行数"""
    async with engine.begin() as conn:
        inserted = await _insert_missing(conn, StudentDB, "student_id", DEMO_STUDENTS)
        inserted += await _insert_missing(conn, MerchantDB, "merchant_id", DEMO_MERCHANTS)
        inserted += await _insert_missing(conn, DishDB, "dish_id", DEMO_DISHES)

    logger.info(f"演示数据插入完成，新增 {inserted} 行")
    return inserted


async def main(seed: bool = False) -> None:
    try:
        await init_database()
        await create_canteen_tables(database.engine)
        if seed:
            await seed_demo_data(database.engine)
        logger.info("食堂数据库初始化完成")

    except Exception as e:
        logger.error(f"食堂数据库初始化失败: {e}")
        raise
    finally:
        await close_database()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(description="初始化校园食堂数据库表")
    parser.add_argument("--seed", action="store_true", help="插入演示学生、档口和菜品")
    args = parser.parse_args()

    asyncio.run(main(seed=args.seed))
