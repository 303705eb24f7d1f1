# ==============================================
# hospital_etl/processors/csv_processor.py
# ==============================================
import csv
from typing import Iterator, List, Optional

import chardet

from .base_processor import BaseProcessor, MalformedRow, Row
from hospital_etl.core.exceptions import FileProcessingException
from hospital_etl.core.logging import get_logger

logger = get_logger(__name__)


class CSVProcessor(BaseProcessor):
    """
    CSV reader with encoding and delimiter detection. Lines with more
    fields than the header are reported as MalformedRow.
    """

    def __init__(self, encoding: Optional[str] = None, delimiter: Optional[str] = None, **kwargs):
        """
        Initialize CSV processor

        Args:
            encoding: Source encoding; detected with chardet when None
            delimiter: Field delimiter; sniffed when None
            **kwargs: Passed to BaseProcessor
        """
        super().__init__(**kwargs)
        self.encoding = encoding
        self.delimiter = delimiter
        self.delimiter_candidates = [',', ';', '\t', '|']
        self.quote_char = '"'

    def read_headers(self, file_path: str) -> List[str]:
        self.ensure_exists(file_path)
        encoding = self._detect_encoding(file_path)
        delimiter = self._detect_delimiter(file_path, encoding)

        with open(file_path, 'r', encoding=encoding, newline='') as file:
            reader = csv.reader(file, delimiter=delimiter, quotechar=self.quote_char)
            for row in reader:
                if row:
                    return [column.strip() for column in row]

        raise FileProcessingException("CSV file is empty", file_path=file_path)

    def iter_rows(self, file_path: str) -> Iterator[Row]:
        """
        Stream CSV rows without loading the file into memory

        Args:
            file_path: Path to CSV file

        Yields:
            Cleaned row dictionaries, MalformedRow for lines with extra fields
        """
        self.ensure_exists(file_path)
        encoding = self._detect_encoding(file_path)
        delimiter = self._detect_delimiter(file_path, encoding)

        headers = None
        try:
            with open(file_path, 'r', encoding=encoding, newline='') as file:
                reader = csv.reader(file, delimiter=delimiter, quotechar=self.quote_char)

                for values in reader:
                    if not values:
                        continue
                    if headers is None:
                        headers = [column.strip() for column in values]
                        continue

                    if len(values) > len(headers):
                        yield MalformedRow(
                            values,
                            reason=f"Expected {len(headers)} fields, saw {len(values)}",
                            line_number=reader.line_num,
                        )
                        continue

                    padded = list(values) + [None] * (len(headers) - len(values))
                    yield self.clean_record(dict(zip(headers, padded)))

        except (csv.Error, UnicodeDecodeError) as e:
            self.logger.error(f"Error reading CSV file: {str(e)}")
            raise FileProcessingException(f"Failed to read CSV file: {str(e)}", file_path=file_path)

        if headers is None:
            raise FileProcessingException("CSV file is empty", file_path=file_path)

    def _detect_encoding(self, file_path: str) -> str:
        """
        Auto-detect file encoding

        Args:
            file_path: Path to file

        Returns:
            Detected encoding string
        """
        if self.encoding:
            return self.encoding

        with open(file_path, 'rb') as file:
            sample = file.read(10000)

        detected = chardet.detect(sample)
        encoding = detected.get('encoding') or 'utf-8'
        confidence = detected.get('confidence') or 0

        # Use utf-8 as fallback for low confidence
        if confidence < 0.7 or encoding.lower() == 'ascii':
            encoding = 'utf-8'

        self.logger.debug(f"Detected encoding: {encoding} (confidence: {confidence})")
        self.encoding = encoding
        return encoding

    def _detect_delimiter(self, file_path: str, encoding: str) -> str:
        """
        Auto-detect CSV delimiter

        Args:
            file_path: Path to CSV file
            encoding: File encoding

        Returns:
            Detected delimiter character
        """
        if self.delimiter:
            return self.delimiter

        sample_lines = []
        with open(file_path, 'r', encoding=encoding, errors='replace') as file:
            for i, line in enumerate(file):
                if i >= 5:
                    break
                sample_lines.append(line)

        sample_text = ''.join(sample_lines)
        delimiter = ','

        try:
            dialect = csv.Sniffer().sniff(sample_text, delimiters=''.join(self.delimiter_candidates))
            delimiter = dialect.delimiter
        except csv.Error:
            # Fallback: count occurrences of each delimiter in the header line
            header = sample_lines[0] if sample_lines else ''
            counts = {candidate: header.count(candidate) for candidate in self.delimiter_candidates}
            best = max(counts, key=counts.get)
            if counts[best] > 0:
                delimiter = best

        self.logger.debug(f"Detected delimiter: '{delimiter}'")
        self.delimiter = delimiter
        return delimiter
