import logging, time, re

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from .config import Config, global_config

#-----------------------------------------------------------------------------

global_engines: dict[str, AsyncEngine] = {}

def init_db(config: Config, db_config: str = ""):
    # Engines connect lazily, so this only prepares the pool.
    if db_config not in global_engines:
        global_engines[db_config] = config.get_postgresql(db_config).get_async_engine()


async def close_db():
    for key in list(global_engines):
        engine = global_engines.pop(key)
        await engine.dispose()

#-----------------------------------------------------------------------------

async def execute_query(
    query       : str,
    params      : dict | None = None,
    db_config   : str = "",
    fieldList   : list | None = None,
    trace_id    : str = "",
    **kargs
):
    # Check SQL statement.
    if not query:
        raise ValueError("SQL script cannot be empty")

    if not isinstance(db_config, str):
        db_config = ""

    if db_config in global_engines:
        engine = global_engines[db_config]
    else:
        config = global_config()
        if not config:
            raise ValueError("no configuration found")

        init_db(config, db_config)
        engine = global_engines[db_config]

    #-----------------------------------------------------

    lower_query = query.strip().lower()
    field_list_size = 0 if fieldList is None else len(fieldList)

    start_time = time.time()
    conn = None
    try:
        conn = await engine.connect()
        cur = await conn.execute(text(query), fieldList if field_list_size > 0 else params)

        if lower_query.startswith("insert"):
            # Insert many rows.
            if field_list_size > 0:
                ret = {"record_count": field_list_size}

            # Insert one row.
            elif "returning" in lower_query:
                row = cur.fetchone()
                ret = dict(row._mapping) if row is not None else {}

            else:
                ret = {"record_count": cur.rowcount}

        elif not re.match("^(update|delete|insert|create|drop|alter|truncate).*", lower_query):
            ret = [dict(row._mapping) for row in cur.fetchall()]

        else:
            ret = {"record_count": cur.rowcount}

        await conn.commit()

        extra = {
            "records"   : len(ret) if isinstance(ret, list) else cur.rowcount,
            "time_cost" : round((time.time()-start_time)*1e3, 2)
        }
        if trace_id:
            extra["trace_id"] = trace_id

        logged_query = " ".join(query.split())
        if len(logged_query) > 512:
            logged_query = logged_query[:512] + "..."
        logging.info(logged_query, extra=extra, stacklevel=2)

        return ret

    except Exception as e:
        if conn:
            await conn.rollback()

        logged_query = " ".join(query.split())
        if len(logged_query) > 512:
            logged_query = logged_query[:512] + "..."

        extra = {
            "sql"       : logged_query,
            "batch_size": field_list_size,
            "time_cost" : round((time.time()-start_time)*1e3, 2)
        }
        if trace_id:
            extra["trace_id"] = trace_id

        logging.error(str(e), extra=extra, stacklevel=2)

        raise

    finally:
        if conn:
            await conn.close()

#-----------------------------------------------------------------------------
