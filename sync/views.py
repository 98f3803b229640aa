from rest_framework.response import Response
from rest_framework.views import APIView

from common.exceptions import validation_failed_response
from sync.models import SyncOutbox
from sync.serializers import ChangeFeedQuerySerializer


class ChangeFeedView(APIView):
    """
    Changes after ``cursor`` in write order.

    Clients keep the returned ``server_cursor`` and poll again; any row is a
    signal to refetch the affected collection.
    """

    def get(self, request):
        serializer = ChangeFeedQuerySerializer(data=request.query_params)
        if not serializer.is_valid():
            return validation_failed_response(serializer.errors)

        cursor = serializer.validated_data["cursor"]
        limit = serializer.validated_data["limit"]
        entity = serializer.validated_data.get("entity")

        updates_qs = SyncOutbox.objects.filter(id__gt=cursor).order_by("id")
        if entity:
            updates_qs = updates_qs.filter(entity=entity)
        updates = list(updates_qs[: limit + 1])
        has_more = len(updates) > limit
        updates = updates[:limit]
        server_cursor = updates[-1].id if updates else cursor

        return Response(
            {
                "server_cursor": server_cursor,
                "updates": [
                    {
                        "cursor": update.id,
                        "entity": (update.payload or {}).get("entity", update.entity),
                        "op": (update.payload or {}).get("op", update.op),
                        "entity_id": (update.payload or {}).get("entity_id", str(update.entity_id)),
                        "payload": (update.payload or {}).get("payload", update.payload),
                        "created_at": update.created_at,
                    }
                    for update in updates
                ],
                "has_more": has_more,
            }
        )
