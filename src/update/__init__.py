"""Update pipeline, publisher and batch driver."""
