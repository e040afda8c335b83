from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class StandardResultsSetPagination(PageNumberPagination):
    """Page-number pagination with the item range of the current page in `meta`."""
    page_size = 50
    page_size_query_param = "per_page"
    max_page_size = 200

    def get_paginated_response(self, data):
        page = self.page
        return Response({
            "meta": {
                "total": page.paginator.count,
                "per_page": self.get_page_size(self.request),
                "current_page": page.number,
                "last_page": page.paginator.num_pages,
                "from": page.start_index() if data else None,
                "to": page.end_index() if data else None,
            },
            "links": {
                "next": self.get_next_link(),
                "previous": self.get_previous_link(),
            },
            "results": data,
        })
