"""
Customer notification of purchased download links.

E-mail delivery is not implemented; the links that would be sent are logged
so that a failed delivery can be recovered by hand from the log.
"""

import logging
from typing import List

from .models import DownloadLink

log = logging.getLogger(__name__)


def send_download_links(email: str, links: List[DownloadLink]):
    log.info(f"Enviando {len(links)} links para {email}")
    for link in links:
        log.info(f"Link de download para {email}: {link.nome} (produto {link.produto_id}) -> {link.download_url}")
