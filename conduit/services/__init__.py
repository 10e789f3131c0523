# Services package.
#
# Each module exposes a focused set of async functions that encapsulate
# business logic and database access for a single domain aggregate:
#
#   user_service     — registration, login, profile edits for User
#   profile_service  — public profiles and the follow graph
#   article_service  — Article CRUD, slugs, tags, favorites, listing
#   comment_service  — comments scoped to an Article
#   feed_service     — articles by followed authors
#
# All service functions accept an AsyncSession as their first argument
# so that the router layer controls the transaction boundary via the
# ``get_db`` dependency.
