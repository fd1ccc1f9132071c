"""Table layout.

Key conventions::

    cats          catId
    user_visits   pk=USER#<id> | ANON#<id>   sk=CAT#<catId>
    user_stats    pk=USER#<id>               sk=SCOPE#<scope>
    cat_treats    pk=CAT#<catId>             sk=VISITOR#<visitorId>
    cat_comments  pk=CAT#<catId>             sk=COMMENT#<createdAt>#<visitorId>
    visit_tokens  token                      (expires via expiresAt)
"""

from catmap.storage.base import IndexSpec, TableSpec

CATS = "cats"
USER_VISITS = "user_visits"
USER_STATS = "user_stats"
CAT_TREATS = "cat_treats"
CAT_COMMENTS = "cat_comments"
VISIT_TOKENS = "visit_tokens"

GSI_STATUS_GEOHASH = "GSI_StatusGeohash"
GSI_STATUS_CREATED_AT = "GSI_StatusCreatedAt"
GSI_VISITS_BY_CAT = "GSI_VisitsByCat"
GSI_LEADERBOARD = "GSI_Leaderboard"
GSI_TREATS_BY_VISITOR = "GSI_TreatsByVisitor"

TABLES: tuple[TableSpec, ...] = (
    TableSpec(
        name=CATS,
        partition_key="catId",
        indexes=(
            IndexSpec(GSI_STATUS_GEOHASH, partition="status", sort="geohash"),
            IndexSpec(GSI_STATUS_CREATED_AT, partition="status", sort="createdAt"),
        ),
    ),
    TableSpec(
        name=USER_VISITS,
        partition_key="pk",
        sort_key="sk",
        indexes=(IndexSpec(GSI_VISITS_BY_CAT, partition="catId", sort="createdAt"),),
    ),
    TableSpec(
        name=USER_STATS,
        partition_key="pk",
        sort_key="sk",
        indexes=(IndexSpec(GSI_LEADERBOARD, partition="gsi1pk", sort="gsi1sk"),),
    ),
    TableSpec(
        name=CAT_TREATS,
        partition_key="pk",
        sort_key="sk",
        indexes=(IndexSpec(GSI_TREATS_BY_VISITOR, partition="visitorId", sort="createdAt"),),
    ),
    TableSpec(name=CAT_COMMENTS, partition_key="pk", sort_key="sk"),
    TableSpec(name=VISIT_TOKENS, partition_key="token", ttl_attribute="expiresAt"),
)


def user_key(user_id: str) -> str:
    return f"USER#{user_id}"


def cat_key(cat_id: str) -> str:
    return f"CAT#{cat_id}"


def scope_key(scope: str) -> str:
    return f"SCOPE#{scope}"


def visitor_key(visitor_id: str) -> str:
    return f"VISITOR#{visitor_id}"
