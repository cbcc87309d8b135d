import datetime

import pytest

from dynarest.csv_export import csv_columns, csv_escape, csv_header_row, to_csv


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, ""),
        ("", ""),
        (True, '"true"'),
        (False, '"false"'),
        (12.0, '"12"'),
        (12.5, '"12.5"'),
        ('say "hi"', '"say ""hi"""'),
        ("a\r\nb\rc", '"a\nb\nc"'),
        (["a", "b"], '"a,b"'),
        (datetime.datetime(2014, 1, 31, 12, 30, 58, 123000), '"2014-01-31T12:30:58.123Z"'),
    ],
)
def test_csv_escape(value, expected):
    assert csv_escape(value) == expected


def test_csv_columns(registry):
    columns = csv_columns(registry.lookup("address"))
    paths = [path for path, _ in columns]
    assert paths[:3] == ["address_line1", "city", "zip"]
    assert ("photo.filename", "Photo Filename") in columns
    assert ("location.coordinates", "Location Coordinates") in columns
    assert "internal" not in paths
    assert "_acl" not in paths and "__v" not in paths
    assert paths[-4:] == ["createdBy", "updatedBy", "createdDate", "updatedDate"]


def test_csv_header_is_restricted_to_the_projection(registry):
    header, paths = csv_header_row(registry.lookup("address"), ["city", "zip", "photo.size"])
    assert header == '"City", "Zip", "Photo Size"\n'
    assert paths == ["city", "zip", "photo.size"]


def test_to_csv(registry):
    person = registry.lookup("person")
    documents = [
        {"_id": "1" * 24, "firstname": "Ann", "shipping": {"_id": "2" * 24, "city": "Boston"}},
        {"_id": "3" * 24, "firstname": 'Bea "B"', "shipping": None},
    ]
    assert to_csv(person, documents, ["firstname", "shipping"]) == (
        '"Firstname", "Shipping"\n' '"Ann", "' + "2" * 24 + '"\n' '"Bea ""B""", \n'
    )
