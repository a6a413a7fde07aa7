from typing import Final

PROJECT_NAME: Final = 'varvis-download'
REPOSITORY_URL: Final = 'https://github.com/LaborBerlin/varvis-download'
LICENSE: Final = 'GPL-3.0'

VARVIS_URL_TEMPLATE: Final = 'https://{target}.varvis.com'
CSRF_HEADER: Final = 'x-csrf-token'
AUTHENTICATE_PATH: Final = '/authenticate'
LOGIN_PATH: Final = '/login'
ANALYSES_PATH: Final = '/api/analyses'
DOWNLOAD_LINKS_PATH: Final = '/api/analysis/{analysis_id}/get-file-download-links'
RESTORE_PATH: Final = '/archive/analysis/restore'

DEFAULT_RESTORATION_FILE: Final = 'awaiting-restoration.json'
DEFAULT_FILETYPES: Final = ('bam', 'bam.bai')
EXCLUDED_ANALYSIS_TYPES: Final = frozenset({'CNV'})

MULTI_REGION_TOKEN: Final = 'multiple-regions'
# samtools needs explicit coordinates in a BED file, so chromosome-only regions span the whole chromosome
WHOLE_CHROMOSOME_END: Final = 300_000_000

DOWNLOAD_CHUNK_SIZE: Final = 1024 * 1024 * 8
URL_EXPIRY_THRESHOLD_MINUTES: Final = 5
