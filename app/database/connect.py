from cassandra.cluster import Session
from cassandra.cqlengine import connection


def get_cassandra_session() -> Session:
    """
    Returns the session registered by connect_to_db().
    """
    return connection.get_session()
