from rest_framework import filters


class SortDirectionFilter(filters.OrderingFilter):
    """
    OrderingFilter driven by `?sort=<field>&direction=asc|desc` instead of `?ordering=-field`.

    Only one field is accepted; unknown fields fall back to the view's `ordering`.
    """
    ordering_param = "sort"
    direction_param = "direction"
    default_direction = "desc"

    def get_ordering(self, request, queryset, view):
        sort = request.query_params.get(self.ordering_param, "").strip()
        if sort:
            direction = request.query_params.get(self.direction_param, self.default_direction)
            prefix = "" if direction.lower() == "asc" else "-"
            ordering = self.remove_invalid_fields(queryset, [prefix + sort], view, request)
            if ordering:
                return ordering
        return self.get_default_ordering(view)
