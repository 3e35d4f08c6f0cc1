TEST_BUCKET_NAME = "some-bucket"
TEST_REGION = "us-east-1"
TEST_PORT = 8080
TEST_CHUNK_SIZE = 4
