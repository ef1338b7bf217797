# shared/common/pagination.py
"""
Pagination for list endpoints.
"""

from collections import OrderedDict
from typing import Any

from django.conf import settings
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class StandardPagination(PageNumberPagination):
    """
    Page number pagination wrapped in the service response envelope.
    """

    page_size_query_param = 'page_size'
    max_page_size = 100

    def get_page_size(self, request):
        self.page_size = getattr(settings, 'REST_FRAMEWORK', {}).get('PAGE_SIZE', 20)
        return super().get_page_size(request)

    def get_paginated_response(self, data: Any) -> Response:
        paginator = self.page.paginator
        return Response(OrderedDict([
            ('success', True),
            ('count', paginator.count),
            ('total_pages', paginator.num_pages),
            ('current_page', self.page.number),
            ('has_next', self.page.has_next()),
            ('has_previous', self.page.has_previous()),
            ('results', data),
        ]))
